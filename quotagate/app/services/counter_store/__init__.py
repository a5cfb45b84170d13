"""Counter store backends for per-principal usage records."""

from typing import Optional

from quotagate.app.core.config import Settings, settings as default_settings
from quotagate.app.core.logging import get_logger

from .base import CounterStore
from .memory import InMemoryCounterStore
from .redis_store import RedisCounterStore

logger = get_logger(__name__)

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]


def create_counter_store(settings: Optional[Settings] = None) -> CounterStore:
    """Build the counter store selected by settings.

    Uses Redis when ``redis_enabled`` is set, otherwise an in-memory store.
    """
    cfg = settings or default_settings
    if cfg.redis_enabled:
        logger.info("Using Redis counter store")
        return RedisCounterStore(redis_url=cfg.redis_url, timeout=cfg.counter_store_timeout)
    logger.debug("Using in-memory counter store")
    return InMemoryCounterStore()
