"""Daily token budget enforcement with precharge and settlement.

Admission reserves the estimated cost of a call up front (precharge). Once
the real cost is known, ``settle`` charges any excess. Over-estimates are
never refunded, so a reservation is a sticky upper bound.

When the counter store fails, enforcement is switched off for the life of
this guard and every request is allowed (fail-open). There is no recovery
probing: restart the process to re-enable tracking.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from quotagate.app.core.config import settings
from quotagate.app.core.logging import get_log_context, get_logger
from quotagate.app.core.utils import seconds_until_next_utc_day
from quotagate.app.exceptions import BudgetExceededError, StoreError
from quotagate.app.services.usage_ledger import UsageLedger

logger = get_logger(__name__)


class StoreAvailability(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class AvailabilityFlag:
    """Lock-guarded, one-way availability state of the counter store."""

    def __init__(self) -> None:
        self._state = StoreAvailability.AVAILABLE
        self._lock = threading.Lock()

    @property
    def state(self) -> StoreAvailability:
        with self._lock:
            return self._state

    def is_available(self) -> bool:
        return self.state is StoreAvailability.AVAILABLE

    def mark_unavailable(self) -> bool:
        """Move to UNAVAILABLE. Returns True only for the call that flipped it."""
        with self._lock:
            if self._state is StoreAvailability.UNAVAILABLE:
                return False
            self._state = StoreAvailability.UNAVAILABLE
            return True


@dataclass
class UsageSnapshot:
    """Budget view returned by admission and the usage endpoint.

    ``tracked`` is False when the store could not be consulted and the
    numbers are the permissive defaults.
    """
    used: int
    limit: int
    tracked: bool = True

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def to_dict(self) -> dict:
        return {"used": self.used, "remaining": self.remaining, "limit": self.limit}


class QuotaGuard:
    """Enforces the per-principal daily token budget."""

    def __init__(self, ledger: UsageLedger, daily_limit: Optional[int] = None) -> None:
        self._ledger = ledger
        self.daily_limit = settings.ai_daily_token_limit if daily_limit is None else daily_limit
        self._availability = AvailabilityFlag()

    @property
    def available(self) -> bool:
        """Whether usage tracking is still enabled."""
        return self._availability.is_available()

    @property
    def availability(self) -> StoreAvailability:
        return self._availability.state

    def _disable_tracking(self, principal_id: str, error: StoreError) -> None:
        if self._availability.mark_unavailable():
            logger.error(
                f"Counter store unavailable, disabling token budget enforcement: {error}",
                extra=get_log_context(principal_id=principal_id, operation=error.operation),
            )

    async def assert_budget(
        self,
        principal_id: str,
        estimated_cost: int,
        daily_limit: Optional[int] = None,
    ) -> UsageSnapshot:
        """Check the budget and precharge ``estimated_cost``.

        Args:
            principal_id: Authenticated subject id
            estimated_cost: Tokens to reserve before the work runs
            daily_limit: Override of the configured daily limit

        Returns:
            UsageSnapshot after the precharge

        Raises:
            BudgetExceededError: If the precharge would exceed the daily limit
        """
        limit = self.daily_limit if daily_limit is None else daily_limit

        if not self._availability.is_available():
            return UsageSnapshot(used=0, limit=limit, tracked=False)

        # Read and precharge against the same UTC day.
        date_key = self._ledger.today()
        try:
            record = await self._ledger.get_today(principal_id, date_key)
        except StoreError as e:
            self._disable_tracking(principal_id, e)
            return UsageSnapshot(used=0, limit=limit, tracked=False)

        if record.tokens_used + estimated_cost > limit:
            logger.info(
                "Daily token limit exceeded",
                extra=get_log_context(
                    principal_id=principal_id,
                    tokens_used=record.tokens_used,
                    estimated_cost=estimated_cost,
                    daily_limit=limit,
                ),
            )
            raise BudgetExceededError(
                used=record.tokens_used,
                limit=limit,
                requested=estimated_cost,
                retry_after=seconds_until_next_utc_day(),
            )

        try:
            tokens_used = await self._ledger.increment_today(
                principal_id, estimated_cost, 1, date_key
            )
        except StoreError as e:
            # The decision above stands; the request is not rejected retroactively.
            self._disable_tracking(principal_id, e)
            return UsageSnapshot(used=record.tokens_used, limit=limit, tracked=False)

        return UsageSnapshot(used=tokens_used, limit=limit)

    async def settle(self, principal_id: str, actual_cost: int, precharged: int) -> None:
        """Charge the part of ``actual_cost`` the precharge did not cover.

        Never raises: failures are logged and dropped so an already-served
        response is never affected.
        """
        delta = max(0, actual_cost - precharged)
        if delta == 0 or not self._availability.is_available():
            return

        try:
            await self._ledger.increment_today(principal_id, delta, 0)
        except StoreError as e:
            self._disable_tracking(principal_id, e)
            logger.error(
                f"Failed to settle token usage: {e}",
                extra=get_log_context(principal_id=principal_id, delta=delta),
            )
        except Exception as e:
            logger.exception(
                f"Unexpected error settling token usage: {e}",
                extra=get_log_context(principal_id=principal_id, delta=delta),
            )

    async def get_usage(self, principal_id: str, daily_limit: Optional[int] = None) -> UsageSnapshot:
        """Today's usage for ``principal_id`` without charging anything."""
        limit = self.daily_limit if daily_limit is None else daily_limit

        if not self._availability.is_available():
            return UsageSnapshot(used=0, limit=limit, tracked=False)

        try:
            record = await self._ledger.get_today(principal_id)
        except StoreError as e:
            self._disable_tracking(principal_id, e)
            return UsageSnapshot(used=0, limit=limit, tracked=False)

        return UsageSnapshot(used=record.tokens_used, limit=limit)
