from sqlalchemy import JSON, Column, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TIMESTAMP

from listingbot.database import Base


class ListingSession(Base):
    __tablename__ = "listing_sessions"

    conversation_id = Column(Text, primary_key=True)  # telegram chat id
    state = Column(Text, nullable=False, default="initial")
    collected_data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    last_inbound_text = Column(Text)
    last_updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
