import asyncio
from typing import Awaitable, Callable, TypeVar

from listingbot.logging_config import get_logger
from listingbot.services.errors import TransientBackendError

logger = get_logger("retry")

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
    sleep_func=asyncio.sleep,
    context: dict | None = None,
) -> T:
    """
    Run operation up to `attempts` times with linear backoff.

    Waits attempt_index * base_delay_seconds between tries. The last error is
    raised as TransientBackendError once every attempt has failed.
    """
    attempts = max(int(attempts), 1)
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            last_error = exc
            logger.warning(
                f"{name} attempt {attempt}/{attempts} failed: {exc}",
                extra={"context": {**(context or {}), "operation": name, "attempt": attempt}},
            )
            if attempt < attempts:
                await sleep_func(base_delay_seconds * attempt)

    raise TransientBackendError(name, attempts, last_error)
