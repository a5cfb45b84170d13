"""Services package for usage tracking and budget enforcement.

This package provides:
- Counter store backends (in-memory and Redis)
- The per-principal daily usage ledger
- The quota guard implementing precharge and settlement
"""

from quotagate.app.services.counter_store import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)
from quotagate.app.services.usage_ledger import UsageLedger, UsageRecord
from quotagate.app.services.quota_guard import (
    AvailabilityFlag,
    QuotaGuard,
    StoreAvailability,
    UsageSnapshot,
)

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
    "UsageLedger",
    "UsageRecord",
    "AvailabilityFlag",
    "QuotaGuard",
    "StoreAvailability",
    "UsageSnapshot",
]
