"""HTTP routes and dependencies."""

from quotagate.app.api.dependencies import (
    AdmissionDep,
    PrincipalDep,
    QuotaGuardDep,
    get_admission,
    get_principal,
    get_quota_guard,
    get_rate_limiter,
    rate_limited,
)
from quotagate.app.api.usage import router as usage_router

__all__ = [
    "AdmissionDep",
    "PrincipalDep",
    "QuotaGuardDep",
    "get_admission",
    "get_principal",
    "get_quota_guard",
    "get_rate_limiter",
    "rate_limited",
    "usage_router",
]
