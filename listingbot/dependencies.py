"""Process-wide service singletons, overridable through FastAPI dependency_overrides."""

from datetime import timedelta
from functools import lru_cache

from listingbot.config import get_settings
from listingbot.database import SessionLocal
from listingbot.services.idempotency import IdempotencyFilter
from listingbot.services.listing_service import ListingService, SqlListingBackend
from listingbot.services.llm import OpenAIProvider
from listingbot.services.media_service import MediaPipeline
from listingbot.services.media_store import LocalMediaStore
from listingbot.services.messenger import OutboundMessenger
from listingbot.services.orchestrator import WebhookOrchestrator
from listingbot.services.session_store import SessionStore, SqlSessionBackend
from listingbot.services.telegram_service import TelegramService


@lru_cache
def get_media_store() -> LocalMediaStore:
    settings = get_settings()
    return LocalMediaStore(
        settings.media_storage_dir,
        signing_secret=settings.media_signing_secret,
        public_base_url=settings.public_base_url,
        url_ttl_seconds=settings.media_url_ttl_seconds,
    )


@lru_cache
def get_orchestrator() -> WebhookOrchestrator:
    settings = get_settings()
    retry = {"attempts": settings.retry_attempts, "base_delay_seconds": settings.retry_base_delay_seconds}

    telegram = TelegramService(settings.telegram_token or "", settings.telegram_api_base_url)
    ai = OpenAIProvider(
        api_key=settings.openai_api_key or "",
        default_model=settings.vision_model,
        transcription_model=settings.transcription_model,
        timeout_seconds=settings.ai_timeout_seconds,
    )
    media = MediaPipeline(
        telegram,
        ai,
        get_media_store(),
        fetch_timeout_seconds=settings.media_fetch_timeout_seconds,
        max_bytes=settings.media_max_bytes,
    )
    sessions = SessionStore(
        SqlSessionBackend(SessionLocal),
        timeout=timedelta(minutes=settings.session_timeout_minutes),
        **retry,
    )
    return WebhookOrchestrator(
        dedup=IdempotencyFilter(settings.dedup_capacity),
        sessions=sessions,
        media=media,
        listings=ListingService(SqlListingBackend(SessionLocal), **retry),
        messenger=OutboundMessenger(telegram, **retry),
    )
