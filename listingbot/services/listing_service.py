import asyncio
from abc import ABC, abstractmethod

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import sessionmaker

from listingbot.logging_config import get_logger
from listingbot.models import Listing
from listingbot.services.retry import DEFAULT_ATTEMPTS, DEFAULT_BASE_DELAY_SECONDS, retry_async
from listingbot.services.state_machine import LISTING_FIELDS

logger = get_logger("listing_service")


class ListingNotFoundError(LookupError):
    pass


class ListingBackend(ABC):
    """Record store for finalized listings."""

    @abstractmethod
    def append_record(self, conversation_id: str, listing_id: str, fields: dict) -> str:
        """Store the listing and return its record id."""
        pass

    @abstractmethod
    def append_image_url(self, listing_id: str, url: str) -> None:
        pass


class SqlListingBackend(ListingBackend):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def append_record(self, conversation_id: str, listing_id: str, fields: dict) -> str:
        db = self.session_factory()
        try:
            existing = db.query(Listing).filter(Listing.listing_id == listing_id).first()
            if existing:
                # Replayed confirmation for the same event.
                logger.info(f"Listing {listing_id} already stored, skipping insert")
                return str(existing.id)

            values = {name: fields.get(name) for name in LISTING_FIELDS}
            listing = Listing(
                listing_id=listing_id,
                conversation_id=conversation_id,
                image_urls=[],
                **values,
            )
            db.add(listing)
            db.commit()
            return str(listing.id)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def append_image_url(self, listing_id: str, url: str) -> None:
        db = self.session_factory()
        try:
            listing = db.query(Listing).filter(Listing.listing_id == listing_id).first()
            if not listing:
                raise ListingNotFoundError(f"Listing {listing_id} not found")
            urls = list(listing.image_urls or [])
            if url in urls:
                return
            listing.image_urls = urls + [url]
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class ListingService:
    """Retry-wrapped access to the listing record store."""

    def __init__(
        self,
        backend: ListingBackend,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        sleep_func=asyncio.sleep,
    ):
        self.backend = backend
        self.attempts = attempts
        self.base_delay_seconds = base_delay_seconds
        self.sleep_func = sleep_func

    async def persist_listing(self, conversation_id: str, listing_id: str, fields: dict) -> str:
        async def _append():
            return await run_in_threadpool(self.backend.append_record, conversation_id, listing_id, fields)

        record_id = await retry_async(
            _append,
            name="listing_append",
            attempts=self.attempts,
            base_delay_seconds=self.base_delay_seconds,
            sleep_func=self.sleep_func,
            context={"conversation_id": conversation_id, "listing_id": listing_id},
        )
        logger.info(
            "Listing persisted",
            extra={"context": {"conversation_id": conversation_id, "listing_id": listing_id, "record_id": record_id}},
        )
        return record_id

    async def add_image(self, listing_id: str, url: str) -> None:
        async def _append_image():
            await run_in_threadpool(self.backend.append_image_url, listing_id, url)

        await retry_async(
            _append_image,
            name="listing_add_image",
            attempts=self.attempts,
            base_delay_seconds=self.base_delay_seconds,
            sleep_func=self.sleep_func,
            context={"listing_id": listing_id},
        )
