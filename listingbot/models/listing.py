from sqlalchemy import JSON, BigInteger, Column, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP

from listingbot.database import Base


class Listing(Base):
    __tablename__ = "listings"

    id = Column(BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True)
    listing_id = Column(Text, nullable=False, unique=True)  # PROP-<event id>
    conversation_id = Column(Text, nullable=False)
    address = Column(Text)
    zip = Column(Text)
    bedrooms = Column(Integer)
    bathrooms = Column(Integer)
    size = Column(Integer)  # square meters
    price = Column(BigInteger)
    amenities = Column(Text)
    image_urls = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
