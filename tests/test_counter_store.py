"""Tests for counter store backends."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis

from quotagate.app.core.config import Settings
from quotagate.app.exceptions import StoreError
from quotagate.app.services.counter_store import (
    InMemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def mock_redis():
    """Create a mock Redis client with hash semantics (decoded responses)."""
    client = MagicMock()
    client.data = {}
    client.fail_pipeline = None

    async def mock_hgetall(key):
        return dict(client.data.get(key, {}))

    def apply_hsetnx(key, field, value):
        record = client.data.setdefault(key, {})
        if field in record:
            return 0
        record[field] = value
        return 1

    def apply_hincrby(key, field, amount):
        record = client.data.setdefault(key, {})
        record[field] = str(int(record.get(field, "0")) + amount)
        return int(record[field])

    def apply_hset(key, mapping):
        client.data.setdefault(key, {}).update(mapping)
        return len(mapping)

    def mock_pipeline(transaction=True):
        pipe = MagicMock()
        queued = []

        def queue(command):
            def add(*args, **kwargs):
                queued.append((command, args, kwargs))
                return pipe
            return add

        async def execute():
            if client.fail_pipeline is not None:
                raise client.fail_pipeline
            return [command(*args, **kwargs) for command, args, kwargs in queued]

        pipe.hsetnx = queue(apply_hsetnx)
        pipe.hincrby = queue(apply_hincrby)
        pipe.hset = queue(apply_hset)
        pipe.execute = execute
        return pipe

    client.hgetall = mock_hgetall
    client.hset = AsyncMock(side_effect=apply_hset)
    client.hincrby = AsyncMock(side_effect=apply_hincrby)
    client.pipeline = mock_pipeline
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


# ============================================================================
# In-memory store
# ============================================================================

class TestInMemoryCounterStore:
    """Tests for the in-memory counter store."""

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self):
        store = InMemoryCounterStore()
        assert await store.get("user-1_2026-02-17") is None

    @pytest.mark.asyncio
    async def test_set_merges_fields(self):
        store = InMemoryCounterStore()
        await store.set("k", {"a": 1})
        await store.set("k", {"b": 2})
        assert await store.get("k") == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_set_only_if_absent_keeps_existing_fields(self):
        store = InMemoryCounterStore()
        await store.atomic_increment("k", "tokensUsed", 500)
        await store.set("k", {"tokensUsed": 0, "requestCount": 0}, only_if_absent=True)
        assert await store.get("k") == {"tokensUsed": 500, "requestCount": 0}

    @pytest.mark.asyncio
    async def test_atomic_increment_creates_field(self):
        store = InMemoryCounterStore()
        assert await store.atomic_increment("k", "tokensUsed", 7) == 7
        assert await store.atomic_increment("k", "tokensUsed", 3) == 10

    @pytest.mark.asyncio
    async def test_increment_several_fields_and_write_metadata(self):
        store = InMemoryCounterStore()
        counters = await store.increment(
            "k", {"tokensUsed": 500, "requestCount": 1}, {"lastUpdated": "2026-02-17T09:30:00+00:00"}
        )

        assert counters == {"tokensUsed": 500, "requestCount": 1}
        assert await store.get("k") == {
            "tokensUsed": 500,
            "requestCount": 1,
            "lastUpdated": "2026-02-17T09:30:00+00:00",
        }
        assert store.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self):
        store = InMemoryCounterStore()
        await asyncio.gather(*(store.atomic_increment("k", "n", 1) for _ in range(200)))
        assert (await store.get("k"))["n"] == 200

    @pytest.mark.asyncio
    async def test_get_returns_copy(self):
        store = InMemoryCounterStore()
        await store.set("k", {"a": 1})
        record = await store.get("k")
        record["a"] = 99
        assert (await store.get("k"))["a"] == 1

    def test_public_methods(self):
        store = InMemoryCounterStore()
        methods = {
            name for name in dir(store)
            if not name.startswith("_") and callable(getattr(store, name))
        }
        assert methods == {"get", "set", "increment", "atomic_increment", "close"}

    @pytest.mark.asyncio
    async def test_fail_with_raises_store_error(self):
        store = InMemoryCounterStore()
        store.fail_with = ConnectionError("down")

        with pytest.raises(StoreError) as exc_info:
            await store.get("k")
        assert exc_info.value.operation == "get"
        assert isinstance(exc_info.value.cause, ConnectionError)

        with pytest.raises(StoreError):
            await store.atomic_increment("k", "n", 1)
        assert store.calls == 2


# ============================================================================
# Redis store
# ============================================================================

class TestRedisCounterStore:
    """Tests for the Redis counter store."""

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self, mock_redis):
        store = RedisCounterStore(redis_client=mock_redis)
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, mock_redis):
        store = RedisCounterStore(redis_client=mock_redis)
        await store.set("k", {"principalId": "user-1", "tokensUsed": 0})
        assert await store.get("k") == {"principalId": "user-1", "tokensUsed": "0"}

    @pytest.mark.asyncio
    async def test_set_only_if_absent_uses_hsetnx(self, mock_redis):
        store = RedisCounterStore(redis_client=mock_redis)
        await store.atomic_increment("k", "tokensUsed", 500)
        await store.set("k", {"tokensUsed": 0, "requestCount": 0}, only_if_absent=True)
        assert mock_redis.data["k"] == {"tokensUsed": "500", "requestCount": "0"}

    @pytest.mark.asyncio
    async def test_atomic_increment_returns_int(self, mock_redis):
        store = RedisCounterStore(redis_client=mock_redis)
        assert await store.atomic_increment("k", "tokensUsed", 250) == 250
        assert await store.atomic_increment("k", "tokensUsed", 250) == 500

    @pytest.mark.asyncio
    async def test_increment_uses_one_transaction(self, mock_redis):
        store = RedisCounterStore(redis_client=mock_redis)
        await store.atomic_increment("k", "tokensUsed", 100)

        counters = await store.increment(
            "k", {"tokensUsed": 500, "requestCount": 1}, {"lastUpdated": "2026-02-17T09:30:00+00:00"}
        )

        assert counters == {"tokensUsed": 600, "requestCount": 1}
        assert mock_redis.data["k"] == {
            "tokensUsed": "600",
            "requestCount": "1",
            "lastUpdated": "2026-02-17T09:30:00+00:00",
        }

    @pytest.mark.asyncio
    async def test_failed_transaction_becomes_store_error(self, mock_redis):
        mock_redis.fail_pipeline = redis.ConnectionError("reset")
        store = RedisCounterStore(redis_client=mock_redis)

        with pytest.raises(StoreError) as exc_info:
            await store.increment("k", {"tokensUsed": 500}, {"lastUpdated": "x"})

        assert exc_info.value.operation == "increment"
        assert "k" not in mock_redis.data

    @pytest.mark.asyncio
    async def test_bad_url_becomes_store_error(self):
        with patch("quotagate.app.services.counter_store.redis_store.aioredis.from_url") as from_url:
            from_url.side_effect = ValueError("Redis URL must specify one of the following schemes")
            store = RedisCounterStore(redis_url="cache:6379")

            with pytest.raises(StoreError) as exc_info:
                await store.get("k")
            assert isinstance(exc_info.value.cause, ValueError)
            assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_redis_error_becomes_store_error(self):
        client = MagicMock()
        client.hgetall = AsyncMock(side_effect=redis.ConnectionError("refused"))
        store = RedisCounterStore(redis_client=client)

        with pytest.raises(StoreError) as exc_info:
            await store.get("k")
        assert isinstance(exc_info.value.cause, redis.ConnectionError)

    @pytest.mark.asyncio
    async def test_timeout_becomes_store_error(self):
        async def slow_hincrby(key, field, amount):
            await asyncio.sleep(1)
            return amount

        client = MagicMock()
        client.hincrby = slow_hincrby
        store = RedisCounterStore(redis_client=client, timeout=0.01)

        with pytest.raises(StoreError) as exc_info:
            await store.atomic_increment("k", "tokensUsed", 1)
        assert exc_info.value.operation == "atomic_increment"

    @pytest.mark.asyncio
    async def test_ping(self, mock_redis):
        store = RedisCounterStore(redis_client=mock_redis)
        assert await store.ping() is True

        mock_redis.ping = AsyncMock(side_effect=redis.TimeoutError("slow"))
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_close(self, mock_redis):
        store = RedisCounterStore(redis_client=mock_redis)
        await store.close()
        mock_redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lazy_client_uses_url(self):
        with patch("quotagate.app.services.counter_store.redis_store.aioredis.from_url") as from_url:
            from_url.return_value = MagicMock(hgetall=AsyncMock(return_value={}))
            store = RedisCounterStore(redis_url="redis://cache:6379/2")
            await store.get("k")
            from_url.assert_called_once_with("redis://cache:6379/2", decode_responses=True)


class TestStoreSelection:
    """Tests for backend selection logic."""

    def test_uses_in_memory_by_default(self):
        store = create_counter_store(Settings(_env_file=None, redis_enabled=False))
        assert isinstance(store, InMemoryCounterStore)

    def test_uses_redis_when_enabled(self):
        store = create_counter_store(
            Settings(_env_file=None, redis_enabled=True, redis_url="redis://cache:6379/1")
        )
        assert isinstance(store, RedisCounterStore)
