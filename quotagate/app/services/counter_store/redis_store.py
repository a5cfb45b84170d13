"""Redis-backed counter store.

Each usage record is a Redis hash. Increments use HINCRBY so concurrent
requests for the same principal and day never lose an update, and lazy
record creation uses HSETNX so it cannot overwrite a racing increment.
"""

import asyncio
from typing import Any, Awaitable, Mapping, Optional, TypeVar

import redis
import redis.asyncio as aioredis

from quotagate.app.core.config import settings
from quotagate.app.core.logging import get_logger
from quotagate.app.exceptions import StoreError
from quotagate.app.services.counter_store.base import CounterStore

logger = get_logger(__name__)

T = TypeVar("T")


class RedisCounterStore(CounterStore):
    """Counter store on top of ``redis.asyncio``.

    Every call is bounded by ``timeout`` seconds; timeouts and all Redis
    errors are raised as ``StoreError``.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Initialize the Redis counter store.

        Args:
            redis_client: Optional Redis client instance (decoded responses)
            redis_url: Redis connection URL
            timeout: Per-call timeout in seconds
        """
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url
        self._timeout = timeout or settings.counter_store_timeout

    def _get_redis(self) -> Any:
        """Get or create Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    def _client(self, operation: str, key: str) -> Any:
        # A malformed URL raises ValueError from from_url.
        try:
            return self._get_redis()
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Redis client unavailable for {operation} on {key}: {e}")
            raise StoreError(operation, key, e) from e

    async def _call(self, operation: str, key: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Redis {operation} timed out for {key}")
            raise StoreError(operation, key, e) from e
        except redis.RedisError as e:
            logger.warning(f"Redis {operation} failed for {key}: {e}")
            raise StoreError(operation, key, e) from e

    async def get(self, key: str) -> dict[str, Any] | None:
        client = self._client("get", key)
        data = await self._call("get", key, client.hgetall(key))
        return dict(data) if data else None

    async def set(
        self,
        key: str,
        fields: Mapping[str, Any],
        *,
        only_if_absent: bool = False,
    ) -> None:
        if not fields:
            return
        client = self._client("set", key)
        values = {name: str(value) for name, value in fields.items()}
        if only_if_absent:
            pipe = client.pipeline(transaction=True)
            for name, value in values.items():
                pipe.hsetnx(key, name, value)
            await self._call("set", key, pipe.execute())
        else:
            await self._call("set", key, client.hset(key, mapping=values))

    async def increment(
        self,
        key: str,
        deltas: Mapping[str, int],
        fields: Mapping[str, Any] | None = None,
    ) -> dict[str, int]:
        """HINCRBY each counter and HSET ``fields`` in one MULTI/EXEC."""
        if not deltas:
            return {}
        client = self._client("increment", key)
        pipe = client.pipeline(transaction=True)
        for name, delta in deltas.items():
            pipe.hincrby(key, name, delta)
        if fields:
            pipe.hset(key, mapping={name: str(value) for name, value in fields.items()})
        results = await self._call("increment", key, pipe.execute())
        return {name: int(value) for name, value in zip(deltas, results)}

    async def atomic_increment(self, key: str, field: str, delta: int) -> int:
        client = self._client("atomic_increment", key)
        new_value = await self._call("atomic_increment", key, client.hincrby(key, field, delta))
        return int(new_value)

    async def ping(self) -> bool:
        """Check connectivity to Redis."""
        try:
            client = self._client("ping", "-")
            return bool(await self._call("ping", "-", client.ping()))
        except StoreError:
            return False

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except redis.RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
