import asyncio

from fastapi.concurrency import run_in_threadpool

from listingbot.logging_config import get_logger
from listingbot.services.retry import DEFAULT_ATTEMPTS, DEFAULT_BASE_DELAY_SECONDS, retry_async
from listingbot.services.telegram_service import TelegramService

logger = get_logger("messenger")


class DeliveryError(Exception):
    pass


class OutboundMessenger:
    """Deliver replies to the chat transport with bounded retries."""

    def __init__(
        self,
        telegram: TelegramService,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        sleep_func=asyncio.sleep,
    ):
        self.telegram = telegram
        self.attempts = attempts
        self.base_delay_seconds = base_delay_seconds
        self.sleep_func = sleep_func

    async def _send_once(self, conversation_id: str, text: str) -> None:
        result = await run_in_threadpool(self.telegram.send_message, conversation_id, text)
        if not result.get("ok"):
            raise DeliveryError(result.get("description") or result.get("error") or "sendMessage not ok")

    async def send(self, conversation_id: str, text: str) -> None:
        """Send text as HTML; raises TransientBackendError once retries are exhausted."""
        await retry_async(
            lambda: self._send_once(conversation_id, text),
            name="send_message",
            attempts=self.attempts,
            base_delay_seconds=self.base_delay_seconds,
            sleep_func=self.sleep_func,
            context={"conversation_id": conversation_id},
        )
        logger.info(f"Delivered reply to chat {conversation_id}")
