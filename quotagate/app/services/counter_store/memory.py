"""In-memory counter store.

Used when Redis is disabled and in tests. Data is lost when the process
restarts.
"""

import asyncio
from typing import Any, Mapping

from quotagate.app.exceptions import StoreError
from quotagate.app.services.counter_store.base import CounterStore


class InMemoryCounterStore(CounterStore):
    """Counter store backed by a dict of dicts.

    ``fail_with`` makes every subsequent call raise ``StoreError`` wrapping
    the given exception, which simulates a store outage. ``calls`` counts
    every call that reached the store, failed or not.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self.fail_with: BaseException | None = None
        self.calls = 0

    def _check_available(self, operation: str, key: str) -> None:
        self.calls += 1
        if self.fail_with is not None:
            raise StoreError(operation, key, self.fail_with)

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            self._check_available("get", key)
            record = self._data.get(key)
            return dict(record) if record is not None else None

    async def set(
        self,
        key: str,
        fields: Mapping[str, Any],
        *,
        only_if_absent: bool = False,
    ) -> None:
        async with self._lock:
            self._check_available("set", key)
            record = self._data.setdefault(key, {})
            for name, value in fields.items():
                if only_if_absent and name in record:
                    continue
                record[name] = value

    async def increment(
        self,
        key: str,
        deltas: Mapping[str, int],
        fields: Mapping[str, Any] | None = None,
    ) -> dict[str, int]:
        async with self._lock:
            self._check_available("increment", key)
            record = self._data.setdefault(key, {})
            for name, delta in deltas.items():
                record[name] = int(record.get(name, 0)) + delta
            if fields:
                record.update(fields)
            return {name: record[name] for name in deltas}
