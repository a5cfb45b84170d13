"""Admission control for budgeted endpoints.

Wraps a unit of work with the rate limit check, the daily budget precharge
and a background settlement once the work has finished:

    PENDING -> RATE_CHECKED -> BUDGET_RESERVED -> EXECUTING -> SETTLED

``REJECTED_RATE`` and ``REJECTED_BUDGET`` are terminal and only reachable
before the work starts.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Awaitable, Callable, Optional, Set, TypeVar, Union

from fastapi import Request

from quotagate.app.core.config import Settings, settings as default_settings
from quotagate.app.core.logging import get_log_context, get_logger
from quotagate.app.exceptions import AuthenticationError, BudgetExceededError, RateLimitedError
from quotagate.app.middleware.rate_limit import InMemoryRateLimiter, get_client_identity
from quotagate.app.services.quota_guard import QuotaGuard, UsageSnapshot

logger = get_logger(__name__)

T = TypeVar("T")


class AdmissionState(str, Enum):
    PENDING = "pending"
    RATE_CHECKED = "rate_checked"
    BUDGET_RESERVED = "budget_reserved"
    EXECUTING = "executing"
    SETTLED = "settled"
    REJECTED_RATE = "rejected_rate"
    REJECTED_BUDGET = "rejected_budget"


@dataclass
class AdmissionTicket:
    """Per-request admission state.

    The work reports what it actually spent with ``record_cost``. If it
    never does, the precharge is taken as the actual cost.
    """
    identity: str
    principal_id: str
    estimated_cost: int
    state: AdmissionState = AdmissionState.PENDING
    usage: Optional[UsageSnapshot] = None
    actual_cost: Optional[int] = field(default=None)

    def record_cost(self, tokens: int) -> None:
        self.actual_cost = tokens


class AdmissionMiddleware:
    """Rate limit, precharge, run, settle.

    Only ``RateLimitedError``, ``BudgetExceededError`` and, for a missing
    principal, ``AuthenticationError`` reach the caller. Counter store
    problems are absorbed by the quota guard.
    """

    def __init__(
        self,
        rate_limiter: InMemoryRateLimiter,
        quota_guard: QuotaGuard,
        settings: Optional[Settings] = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.quota_guard = quota_guard
        self._settings = settings or default_settings
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_settlements(self) -> int:
        return len(self._pending)

    async def admit(
        self,
        identity: str,
        principal_id: Union[str, Callable[[], str]],
        estimated_cost: Optional[int] = None,
        daily_limit: Optional[int] = None,
        rate_limit: Optional[int] = None,
    ) -> AdmissionTicket:
        """Run the rate and budget checks.

        ``principal_id`` may be a callable; it is resolved only after the
        rate check passes, so unauthenticated callers are still throttled.

        Raises:
            RateLimitedError: If the client identity is out of tokens
            AuthenticationError: If a principal resolver finds no principal
            BudgetExceededError: If the precharge would exceed the daily limit
        """
        if estimated_cost is None:
            estimated_cost = self._settings.ai_default_estimated_cost

        ticket = AdmissionTicket(identity=identity, principal_id="", estimated_cost=estimated_cost)

        try:
            self.rate_limiter.check(identity, rate_limit)
        except RateLimitedError:
            ticket.state = AdmissionState.REJECTED_RATE
            raise
        ticket.state = AdmissionState.RATE_CHECKED

        if callable(principal_id):
            principal_id = principal_id()
        ticket.principal_id = principal_id

        try:
            ticket.usage = await self.quota_guard.assert_budget(
                principal_id, estimated_cost, daily_limit
            )
        except BudgetExceededError:
            ticket.state = AdmissionState.REJECTED_BUDGET
            raise
        ticket.state = AdmissionState.BUDGET_RESERVED

        logger.debug(
            "Request admitted",
            extra=get_log_context(
                principal_id=principal_id,
                client_identity=identity,
                estimated_cost=estimated_cost,
            ),
        )
        return ticket

    def complete(self, ticket: AdmissionTicket) -> None:
        """Schedule settlement without waiting for it."""
        actual = ticket.estimated_cost if ticket.actual_cost is None else ticket.actual_cost
        task = asyncio.create_task(
            self.quota_guard.settle(ticket.principal_id, actual, ticket.estimated_cost)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        ticket.state = AdmissionState.SETTLED

    async def run(
        self,
        work: Callable[[AdmissionTicket], Awaitable[T]],
        *,
        identity: str,
        principal_id: Union[str, Callable[[], str]],
        estimated_cost: Optional[int] = None,
        daily_limit: Optional[int] = None,
        rate_limit: Optional[int] = None,
    ) -> T:
        """Admit, execute ``work`` and schedule settlement.

        Settlement is scheduled whether the work succeeds or fails.
        """
        ticket = await self.admit(identity, principal_id, estimated_cost, daily_limit, rate_limit)
        ticket.state = AdmissionState.EXECUTING
        try:
            return await work(ticket)
        finally:
            self.complete(ticket)

    async def run_for_request(
        self,
        request: Request,
        work: Callable[[AdmissionTicket], Awaitable[T]],
        *,
        estimated_cost: Optional[int] = None,
        daily_limit: Optional[int] = None,
        rate_limit: Optional[int] = None,
    ) -> T:
        """``run`` with identity and principal taken from the request.

        The principal header is checked after the rate limit.
        """
        return await self.run(
            work,
            identity=get_client_identity(request.headers, self._settings.rate_limit_fallback_identity),
            principal_id=partial(principal_from_request, request),
            estimated_cost=estimated_cost,
            daily_limit=daily_limit,
            rate_limit=rate_limit,
        )

    async def drain(self) -> None:
        """Wait for all scheduled settlements to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def principal_from_request(request: Request) -> str:
    """Get the authenticated principal set by the upstream auth layer.

    Raises:
        AuthenticationError: If no principal was supplied
    """
    principal_id = (request.headers.get("x-user-id") or "").strip()
    if not principal_id:
        raise AuthenticationError()
    return principal_id
