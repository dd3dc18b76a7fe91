from unittest.mock import AsyncMock

import pytest

from listingbot.services.errors import TransientBackendError
from listingbot.services.retry import retry_async


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_returns_first_success_without_sleeping(self):
        operation = AsyncMock(return_value="ok")
        sleep = AsyncMock()

        result = await retry_async(operation, name="op", sleep_func=sleep)

        assert result == "ok"
        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self):
        operation = AsyncMock(side_effect=[ConnectionError("down"), ConnectionError("down"), "ok"])
        sleep = AsyncMock()

        result = await retry_async(operation, name="op", attempts=3, base_delay_seconds=1.0, sleep_func=sleep)

        assert result == "ok"
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_linear_backoff_between_attempts(self):
        operation = AsyncMock(side_effect=ConnectionError("down"))
        sleep = AsyncMock()

        with pytest.raises(TransientBackendError):
            await retry_async(operation, name="op", attempts=3, base_delay_seconds=1.5, sleep_func=sleep)

        assert [call.args[0] for call in sleep.await_args_list] == [1.5, 3.0]

    @pytest.mark.asyncio
    async def test_exhaustion_surfaces_last_error(self):
        last = TimeoutError("still down")
        operation = AsyncMock(side_effect=[ConnectionError("down"), ConnectionError("down"), last])

        with pytest.raises(TransientBackendError) as exc_info:
            await retry_async(operation, name="session_put", attempts=3, sleep_func=AsyncMock())

        assert exc_info.value.operation == "session_put"
        assert exc_info.value.attempts == 3
        assert exc_info.value.cause is last
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_at_least_one_attempt(self):
        operation = AsyncMock(return_value=1)

        assert await retry_async(operation, name="op", attempts=0, sleep_func=AsyncMock()) == 1
