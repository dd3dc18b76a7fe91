import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from listingbot.services.errors import TransientBackendError
from listingbot.services.session_store import SessionRecord, SessionStore, SqlSessionBackend
from listingbot.services.state_machine import ConversationState


class TestSessionStore:
    @pytest.mark.asyncio
    async def test_absent_session_is_none(self, session_store):
        assert await session_store.get("42") is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, session_store, clock):
        await session_store.put("42", ConversationState.AWAITING_ZIP, {"address": "123 Main St"}, "123 Main St")

        record = await session_store.get("42")

        assert record.state == ConversationState.AWAITING_ZIP
        assert record.collected_data == {"address": "123 Main St"}
        assert record.last_inbound_text == "123 Main St"
        assert record.last_updated_at == clock.now

    @pytest.mark.asyncio
    async def test_put_overwrites_instead_of_merging(self, session_store):
        await session_store.put("42", ConversationState.AWAITING_BEDROOMS, {"address": "a", "zip": "1"}, "1")
        await session_store.put("42", ConversationState.AWAITING_ADDRESS, {}, "/restart")

        record = await session_store.get("42")

        assert record.state == ConversationState.AWAITING_ADDRESS
        assert record.collected_data == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", list(ConversationState))
    async def test_expired_session_is_absent_in_any_state(self, session_store, clock, state):
        await session_store.put("42", state, {"address": "a"}, "a")
        clock.advance(minutes=31)

        assert await session_store.get("42") is None

    @pytest.mark.asyncio
    async def test_session_within_timeout_survives(self, session_store, clock):
        await session_store.put("42", ConversationState.AWAITING_PRICE, {}, "x")
        clock.advance(minutes=29)

        assert await session_store.get("42") is not None

    @pytest.mark.asyncio
    async def test_expired_rows_are_kept(self, session_store, session_backend, clock):
        await session_store.put("42", ConversationState.AWAITING_PRICE, {}, "x")
        clock.advance(hours=2)

        assert await session_store.get("42") is None
        assert "42" in session_backend.rows

    @pytest.mark.asyncio
    async def test_get_retries_transient_failures(self, session_store, session_backend):
        await session_store.put("42", ConversationState.AWAITING_ZIP, {}, "x")
        session_backend.fail_gets = 2

        record = await session_store.get("42")

        assert record.state == ConversationState.AWAITING_ZIP
        assert session_backend.get_calls == 3

    @pytest.mark.asyncio
    async def test_put_gives_up_after_three_attempts(self, session_backend, clock):
        sleep = AsyncMock()
        store = SessionStore(session_backend, clock=clock, sleep_func=sleep, base_delay_seconds=1.0)
        session_backend.fail_puts = 5

        with pytest.raises(TransientBackendError):
            await store.put("42", ConversationState.AWAITING_ZIP, {}, "x")

        assert session_backend.put_calls == 3
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]

    def test_custom_timeout(self, session_backend, clock):
        store = SessionStore(session_backend, timeout=timedelta(minutes=5), clock=clock)
        record = SessionRecord("42", last_updated_at=clock.now - timedelta(minutes=6))

        assert store.is_expired(record) is True

    def test_record_without_timestamp_is_expired(self, session_store):
        assert session_store.is_expired(SessionRecord("42")) is True


class TestLostUpdate:
    @pytest.mark.asyncio
    async def test_overlapping_read_modify_write_loses_one_update(self, session_store):
        """The store does no locking; two interleaved get/put pairs overwrite each other."""
        await session_store.put("42", ConversationState.AWAITING_AMENITIES, {}, None)

        reads = []
        both_read = asyncio.Event()

        async def write_field(field, value):
            record = await session_store.get("42")
            data = dict(record.collected_data)
            reads.append(field)
            if len(reads) == 2:
                both_read.set()
            await both_read.wait()
            data[field] = value
            await session_store.put("42", record.state, data, value)

        await asyncio.gather(write_field("address", "123 Main St"), write_field("amenities", "pool"))

        record = await session_store.get("42")
        assert len(set(record.collected_data) & {"address", "amenities"}) == 1


class TestSqlSessionBackend:
    def test_missing_row(self, sqlite_session_factory):
        backend = SqlSessionBackend(sqlite_session_factory)
        assert backend.get_session("nope") is None

    def test_upsert_and_read_back(self, sqlite_session_factory):
        backend = SqlSessionBackend(sqlite_session_factory)
        updated_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

        backend.upsert_session("42", "awaiting_zip", {"address": "123 Main St"}, "123 Main St", updated_at)
        backend.upsert_session("42", "awaiting_bedrooms", {"address": "123 Main St", "zip": "10001"}, "10001", updated_at)

        record = backend.get_session("42")
        assert record.state == ConversationState.AWAITING_BEDROOMS
        assert record.collected_data == {"address": "123 Main St", "zip": "10001"}
        assert record.last_inbound_text == "10001"
        assert record.last_updated_at == updated_at

    def test_unknown_stored_state_reads_as_initial(self, sqlite_session_factory):
        backend = SqlSessionBackend(sqlite_session_factory)
        backend.upsert_session("42", "legacy_state", {}, None, datetime.now(timezone.utc))

        assert backend.get_session("42").state == ConversationState.INITIAL

    @pytest.mark.asyncio
    async def test_store_over_sql_backend(self, sqlite_session_factory):
        store = SessionStore(SqlSessionBackend(sqlite_session_factory), sleep_func=AsyncMock())

        await store.put("42", ConversationState.AWAITING_PRICE, {"size": 120}, "120")

        record = await store.get("42")
        assert record.state == ConversationState.AWAITING_PRICE
        assert record.draft.size == 120
