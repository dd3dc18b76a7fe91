from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

from listingbot.services.errors import ConfigurationError

REQUIRED_CREDENTIALS = ("telegram_token", "openai_api_key", "media_signing_secret")


class Settings(BaseSettings):
    database_url: str = "sqlite:///./listingbot.db"
    log_level: str = "INFO"
    auto_create_tables: bool = True
    cors_allow_origins: str = "*"

    telegram_token: Optional[str] = None
    telegram_api_base_url: str = "https://api.telegram.org"

    openai_api_key: Optional[str] = None
    vision_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"
    ai_timeout_seconds: float = 60.0

    media_storage_dir: str = "./media"
    media_signing_secret: Optional[str] = None
    public_base_url: str = "http://localhost:8000"
    media_url_ttl_seconds: int = 3600  # expiring links given to the vision model
    media_fetch_timeout_seconds: float = 30.0
    media_max_bytes: int = 10 * 1024 * 1024

    session_timeout_minutes: int = 30
    dedup_capacity: int = 1000
    retry_attempts: int = 3
    retry_base_delay_seconds: float = 1.0

    alert_bot_token: Optional[str] = None
    alert_chat_id: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"

    def missing_credentials(self) -> list[str]:
        return [name.upper() for name in REQUIRED_CREDENTIALS if not getattr(self, name)]

    def validate_required(self) -> None:
        """Raise ConfigurationError if any external credential is missing."""
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")


@lru_cache
def get_settings() -> Settings:
    return Settings()
