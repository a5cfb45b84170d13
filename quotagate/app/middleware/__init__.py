"""Middleware package for the admission service."""

from quotagate.app.middleware.admission import (
    AdmissionMiddleware,
    AdmissionState,
    AdmissionTicket,
    principal_from_request,
)
from quotagate.app.middleware.rate_limit import InMemoryRateLimiter, get_client_identity
from quotagate.app.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "AdmissionMiddleware",
    "AdmissionState",
    "AdmissionTicket",
    "principal_from_request",
    "InMemoryRateLimiter",
    "get_client_identity",
    "SecurityHeadersMiddleware",
]
