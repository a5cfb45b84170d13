"""Counter store interface used by the usage ledger."""

from abc import ABC, abstractmethod
from typing import Any, Mapping


class CounterStore(ABC):
    """Abstract base class for counter stores.

    A counter store keeps one hash of named fields per key. Every
    implementation must raise ``StoreError`` for any failure so callers can
    tell infrastructure errors apart from programming errors.
    """

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """Retrieve all fields stored under ``key``.

        Returns:
            The fields as a dict, or None if the key does not exist.
        """
        pass

    @abstractmethod
    async def set(
        self,
        key: str,
        fields: Mapping[str, Any],
        *,
        only_if_absent: bool = False,
    ) -> None:
        """Merge ``fields`` into the hash at ``key``.

        Args:
            key: The record key.
            fields: Field values to write.
            only_if_absent: Write each field only if it does not exist yet.
        """
        pass

    @abstractmethod
    async def increment(
        self,
        key: str,
        deltas: Mapping[str, int],
        fields: Mapping[str, Any] | None = None,
    ) -> dict[str, int]:
        """Atomically add to several integer fields and write ``fields``.

        All changes are applied as one unit: either every delta and field
        lands or the call raises ``StoreError``. Missing keys and fields
        start at 0.

        Returns:
            The incremented fields and their values after the increment.
        """
        pass

    async def atomic_increment(self, key: str, field: str, delta: int) -> int:
        """Atomically add ``delta`` to one integer field.

        Returns:
            The field value after the increment.
        """
        counters = await self.increment(key, {field: delta})
        return counters[field]

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
