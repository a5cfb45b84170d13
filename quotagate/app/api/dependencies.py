"""FastAPI dependencies for admission components stored on app.state."""

from typing import Annotated

from fastapi import Depends, Request

from quotagate.app.middleware.admission import AdmissionMiddleware, principal_from_request
from quotagate.app.middleware.rate_limit import InMemoryRateLimiter, get_client_identity
from quotagate.app.services.quota_guard import QuotaGuard


def get_admission(request: Request) -> AdmissionMiddleware:
    return request.app.state.admission


def get_quota_guard(request: Request) -> QuotaGuard:
    return request.app.state.quota_guard


def get_rate_limiter(request: Request) -> InMemoryRateLimiter:
    return request.app.state.rate_limiter


def get_principal(request: Request) -> str:
    return principal_from_request(request)


def rate_limited(requests_per_minute: int | None = None):
    """Build a dependency that spends one token from the caller's bucket.

    Raises RateLimitedError when the bucket is empty.
    """

    def _dependency(request: Request) -> None:
        limiter = get_rate_limiter(request)
        fallback = request.app.state.settings.rate_limit_fallback_identity
        limiter.check(get_client_identity(request.headers, fallback), requests_per_minute)

    return _dependency


AdmissionDep = Annotated[AdmissionMiddleware, Depends(get_admission)]
QuotaGuardDep = Annotated[QuotaGuard, Depends(get_quota_guard)]
PrincipalDep = Annotated[str, Depends(get_principal)]
