"""Per-principal daily usage records in the counter store.

Record key format: ``{principal_id}_{YYYY-MM-DD}`` (UTC day boundary).
Records are created lazily on first access each day and only ever grow
through atomic increments. Old days are never cleaned up.
"""

from datetime import datetime
from typing import Callable, Optional

from quotagate.app.core.logging import get_logger
from quotagate.app.core.utils import get_utc_date_key, utc_now
from quotagate.app.exceptions import StoreError
from quotagate.app.services.counter_store import CounterStore

from .models import UsageRecord

logger = get_logger(__name__)


class UsageLedger:
    """Maps a principal and UTC day to a usage record.

    No retries and no caching: every call talks to the counter store and
    lets ``StoreError`` propagate to the caller.
    """

    FIELD_TOKENS_USED = "tokensUsed"
    FIELD_REQUEST_COUNT = "requestCount"
    FIELD_LAST_UPDATED = "lastUpdated"

    def __init__(
        self,
        store: CounterStore,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._now = now or utc_now

    def today(self) -> str:
        """Current UTC date key."""
        return get_utc_date_key(self._now())

    def make_key(self, principal_id: str, date_key: Optional[str] = None) -> str:
        """Create counter store key for a principal's usage on a day."""
        if date_key is None:
            date_key = self.today()
        return f"{principal_id}_{date_key}"

    async def get_today(self, principal_id: str, date_key: Optional[str] = None) -> UsageRecord:
        """Get today's usage record, creating a zero record if absent."""
        if date_key is None:
            date_key = self.today()
        key = self.make_key(principal_id, date_key)

        data = await self._store.get(key)
        if data is not None:
            try:
                return UsageRecord.from_dict(data, principal_id, date_key)
            except (TypeError, ValueError) as e:
                logger.warning(f"Corrupted usage record {key}: {e}")
                raise StoreError("get", key, e) from e

        record = UsageRecord(
            principal_id=principal_id,
            date_key=date_key,
            last_updated=self._now(),
        )
        # Field-wise create-only write: a racing increment is never reset.
        await self._store.set(key, record.to_dict(), only_if_absent=True)
        logger.debug(f"Created usage record {key}")
        return record

    async def increment_today(
        self,
        principal_id: str,
        token_delta: int,
        request_delta: int,
        date_key: Optional[str] = None,
    ) -> int:
        """Atomically add to today's token and request counters.

        The counters and ``lastUpdated`` are written in one store call.

        Returns:
            tokens_used after the increment
        """
        key = self.make_key(principal_id, date_key)
        deltas = {self.FIELD_TOKENS_USED: token_delta}
        if request_delta:
            deltas[self.FIELD_REQUEST_COUNT] = request_delta
        counters = await self._store.increment(
            key, deltas, {self.FIELD_LAST_UPDATED: self._now().isoformat()}
        )
        return counters[self.FIELD_TOKENS_USED]
