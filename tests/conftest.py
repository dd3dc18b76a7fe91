import copy
import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, Mock

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("TELEGRAM_TOKEN", "test-telegram-token")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("MEDIA_SIGNING_SECRET", "test-signing-secret")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from listingbot.database import Base  # noqa: E402
from listingbot.services.idempotency import IdempotencyFilter  # noqa: E402
from listingbot.services.listing_service import ListingBackend, ListingNotFoundError, ListingService  # noqa: E402
from listingbot.services.media_service import ImageAnalysis  # noqa: E402
from listingbot.services.orchestrator import WebhookOrchestrator  # noqa: E402
from listingbot.services.session_store import SessionBackend, SessionRecord, SessionStore  # noqa: E402
from listingbot.services.state_machine import parse_state  # noqa: E402


class FakeClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemorySessionBackend(SessionBackend):
    def __init__(self):
        self.rows: dict[str, SessionRecord] = {}
        self.get_calls = 0
        self.put_calls = 0
        self.fail_gets = 0
        self.fail_puts = 0

    def seed(self, conversation_id, state, collected_data, updated_at):
        self.rows[conversation_id] = SessionRecord(
            conversation_id=conversation_id,
            state=parse_state(state),
            collected_data=copy.deepcopy(collected_data),
            last_updated_at=updated_at,
        )

    def get_session(self, conversation_id):
        self.get_calls += 1
        if self.fail_gets > 0:
            self.fail_gets -= 1
            raise ConnectionError("session backend unavailable")
        return copy.deepcopy(self.rows.get(conversation_id))

    def upsert_session(self, conversation_id, state, collected_data, last_inbound_text, updated_at):
        self.put_calls += 1
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise ConnectionError("session backend unavailable")
        self.rows[conversation_id] = SessionRecord(
            conversation_id=conversation_id,
            state=parse_state(state),
            collected_data=copy.deepcopy(collected_data),
            last_inbound_text=last_inbound_text,
            last_updated_at=updated_at,
        )


class InMemoryListingBackend(ListingBackend):
    def __init__(self):
        self.records: dict[str, dict] = {}
        self.append_calls = 0
        self.fail_appends = 0
        self.fail_images = 0

    def append_record(self, conversation_id, listing_id, fields):
        self.append_calls += 1
        if self.fail_appends > 0:
            self.fail_appends -= 1
            raise ConnectionError("record store unavailable")
        self.records.setdefault(
            listing_id,
            {"conversation_id": conversation_id, "fields": dict(fields), "image_urls": []},
        )
        return listing_id

    def append_image_url(self, listing_id, url):
        if self.fail_images > 0:
            self.fail_images -= 1
            raise ConnectionError("record store unavailable")
        if listing_id not in self.records:
            raise ListingNotFoundError(listing_id)
        self.records[listing_id]["image_urls"].append(url)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_backend():
    return InMemorySessionBackend()


@pytest.fixture
def listing_backend():
    return InMemoryListingBackend()


@pytest.fixture
def session_store(session_backend, clock):
    return SessionStore(session_backend, clock=clock, sleep_func=AsyncMock())


@pytest.fixture
def listing_service(listing_backend):
    return ListingService(listing_backend, sleep_func=AsyncMock())


@pytest.fixture
def messenger():
    messenger = Mock()
    messenger.send = AsyncMock()
    return messenger


@pytest.fixture
def media():
    media = Mock()
    media.process_image = AsyncMock(
        side_effect=lambda file_id, listing_id=None: ImageAnalysis(
            url=f"https://media.test/{file_id}.jpg",
            analysis="A two-storey brick house with a front garden.",
            object_id=f"property-images/{file_id}.jpg",
        )
    )
    media.process_document = AsyncMock(return_value="3 bedroom house, 120 m2")
    media.process_voice = AsyncMock(return_value="The house has a pool")
    media.discard = AsyncMock()
    return media


@pytest.fixture
def alert():
    return Mock(return_value=True)


@pytest.fixture
def orchestrator(session_store, listing_service, media, messenger, alert):
    return WebhookOrchestrator(
        dedup=IdempotencyFilter(100),
        sessions=session_store,
        media=media,
        listings=listing_service,
        messenger=messenger,
        alert=alert,
    )


@pytest.fixture
def sqlite_session_factory():
    import listingbot.models  # noqa: F401

    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def make_update():
    """Build a raw Telegram update dict."""

    def _make_update(update_id, text=None, *, chat_id=42, photo=None, document=None, voice=None, caption=None):
        message = {
            "message_id": update_id + 1000,
            "date": 1714564800,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": chat_id, "is_bot": False, "first_name": "Alice"},
        }
        if text is not None:
            message["text"] = text
        if caption is not None:
            message["caption"] = caption
        if photo is not None:
            message["photo"] = [
                {"file_id": f"{photo}-small", "file_unique_id": "s", "width": 90, "height": 90},
                {"file_id": photo, "file_unique_id": "l", "width": 1280, "height": 960},
            ]
        if document is not None:
            message["document"] = {"file_unique_id": "d", **document}
        if voice is not None:
            message["voice"] = {"file_id": voice, "file_unique_id": "v", "duration": 4, "mime_type": "audio/ogg"}
        return {"update_id": update_id, "message": message}

    return _make_update
