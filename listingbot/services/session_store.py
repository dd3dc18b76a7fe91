import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import sessionmaker

from listingbot.logging_config import get_logger
from listingbot.models import ListingSession
from listingbot.services.retry import DEFAULT_ATTEMPTS, DEFAULT_BASE_DELAY_SECONDS, retry_async
from listingbot.services.state_machine import ConversationState, ListingDraft, parse_state

logger = get_logger("session_store")

DEFAULT_SESSION_TIMEOUT = timedelta(minutes=30)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class SessionRecord:
    conversation_id: str
    state: ConversationState = ConversationState.INITIAL
    collected_data: dict = field(default_factory=dict)
    last_inbound_text: Optional[str] = None
    last_updated_at: Optional[datetime] = None

    @classmethod
    def fresh(cls, conversation_id: str) -> "SessionRecord":
        return cls(conversation_id=conversation_id)

    @property
    def draft(self) -> ListingDraft:
        return ListingDraft.from_dict(self.collected_data)


class SessionBackend(ABC):
    """Record backend holding one session row per conversation id."""

    @abstractmethod
    def get_session(self, conversation_id: str) -> Optional[SessionRecord]:
        pass

    @abstractmethod
    def upsert_session(
        self,
        conversation_id: str,
        state: str,
        collected_data: dict,
        last_inbound_text: Optional[str],
        updated_at: datetime,
    ) -> None:
        pass


class SqlSessionBackend(SessionBackend):
    """SQLAlchemy-backed session rows in `listing_sessions`."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_session(self, conversation_id: str) -> Optional[SessionRecord]:
        db = self.session_factory()
        try:
            row = db.query(ListingSession).filter(ListingSession.conversation_id == conversation_id).first()
            if not row:
                return None
            return SessionRecord(
                conversation_id=row.conversation_id,
                state=parse_state(row.state),
                collected_data=dict(row.collected_data or {}),
                last_inbound_text=row.last_inbound_text,
                last_updated_at=_as_utc(row.last_updated_at) if row.last_updated_at else None,
            )
        finally:
            db.close()

    def upsert_session(
        self,
        conversation_id: str,
        state: str,
        collected_data: dict,
        last_inbound_text: Optional[str],
        updated_at: datetime,
    ) -> None:
        db = self.session_factory()
        try:
            row = db.query(ListingSession).filter(ListingSession.conversation_id == conversation_id).first()
            if not row:
                row = ListingSession(conversation_id=conversation_id)
                db.add(row)
            row.state = state
            row.collected_data = dict(collected_data)
            row.last_inbound_text = last_inbound_text
            row.last_updated_at = updated_at
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class SessionStore:
    """
    Retry-wrapped session persistence with inactivity expiry.

    No locking happens here: two overlapping get/put pairs for one conversation
    id can overwrite each other (lost update). Callers that need serialisation
    hold a per-conversation lock around the read-modify-write.
    """

    def __init__(
        self,
        backend: SessionBackend,
        *,
        timeout: timedelta = DEFAULT_SESSION_TIMEOUT,
        attempts: int = DEFAULT_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        sleep_func=asyncio.sleep,
    ):
        self.backend = backend
        self.timeout = timeout
        self.attempts = attempts
        self.base_delay_seconds = base_delay_seconds
        self.clock = clock
        self.sleep_func = sleep_func

    def is_expired(self, record: SessionRecord, now: Optional[datetime] = None) -> bool:
        if record.last_updated_at is None:
            return True
        now = now or self.clock()
        return _as_utc(now) - _as_utc(record.last_updated_at) > self.timeout

    async def get(self, conversation_id: str) -> Optional[SessionRecord]:
        """Return the live session, or None when absent or expired."""

        async def _load():
            return await run_in_threadpool(self.backend.get_session, conversation_id)

        record = await retry_async(
            _load,
            name="session_get",
            attempts=self.attempts,
            base_delay_seconds=self.base_delay_seconds,
            sleep_func=self.sleep_func,
            context={"conversation_id": conversation_id},
        )
        if record is None:
            return None
        if self.is_expired(record):
            logger.info(
                "Session expired, starting fresh",
                extra={"context": {"conversation_id": conversation_id, "state": record.state.value}},
            )
            return None
        return record

    async def put(
        self,
        conversation_id: str,
        state: ConversationState,
        collected_data: dict,
        last_inbound_text: Optional[str],
    ) -> None:
        """Overwrite the whole session row; collected_data is never merged."""
        state_value = parse_state(state).value
        data = dict(collected_data)
        updated_at = self.clock()

        async def _save():
            await run_in_threadpool(
                self.backend.upsert_session,
                conversation_id,
                state_value,
                data,
                last_inbound_text,
                updated_at,
            )

        await retry_async(
            _save,
            name="session_put",
            attempts=self.attempts,
            base_delay_seconds=self.base_delay_seconds,
            sleep_func=self.sleep_func,
            context={"conversation_id": conversation_id},
        )
