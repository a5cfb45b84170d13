from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quotagate.app.api.usage import router as usage_router
from quotagate.app.core.config import Settings, settings as default_settings
from quotagate.app.core.logging import get_log_context, get_logger, setup_logging
from quotagate.app.exceptions import QuotaGateException
from quotagate.app.middleware.admission import AdmissionMiddleware
from quotagate.app.middleware.rate_limit import InMemoryRateLimiter
from quotagate.app.middleware.security_headers import SecurityHeadersMiddleware
from quotagate.app.services.counter_store import CounterStore, create_counter_store
from quotagate.app.services.quota_guard import QuotaGuard
from quotagate.app.services.usage_ledger import UsageLedger


def create_app(
    settings: Optional[Settings] = None,
    counter_store: Optional[CounterStore] = None,
    clock: Optional[Callable[[], float]] = None,
    now: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use instead of the environment-loaded ones
        counter_store: Counter store to use instead of the configured one
        clock: Millisecond clock for the rate limiter
        now: UTC clock for the usage ledger

    Returns:
        Configured FastAPI application instance
    """
    cfg = settings or default_settings
    setup_logging()
    logger = get_logger(__name__)

    store = counter_store or create_counter_store(cfg)
    rate_limiter = InMemoryRateLimiter(
        requests_per_minute=cfg.rate_limit_requests_per_minute,
        refill_interval_ms=cfg.rate_limit_refill_interval_ms,
        clock=clock,
    )
    quota_guard = QuotaGuard(UsageLedger(store, now=now), daily_limit=cfg.ai_daily_token_limit)
    admission = AdmissionMiddleware(rate_limiter, quota_guard, settings=cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Flushes outstanding settlements and closes the counter store on
        shutdown.
        """
        logger.info(
            "Application startup complete",
            extra={
                "counter_store": type(store).__name__,
                "daily_token_limit": cfg.ai_daily_token_limit,
                "requests_per_minute": cfg.rate_limit_requests_per_minute,
            },
        )
        yield
        await admission.drain()
        await store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="QuotaGate",
        description="Request admission with per-client rate limiting and daily AI token budgets",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = cfg
    app.state.counter_store = store
    app.state.rate_limiter = rate_limiter
    app.state.quota_guard = quota_guard
    app.state.admission = admission

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["Retry-After"],
        max_age=600,
    )

    app.include_router(usage_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with usage tracking status."""
        return {
            "status": "ok" if quota_guard.available else "degraded",
            "components": {
                "counter_store": {
                    "status": quota_guard.availability.value,
                    "type": type(store).__name__,
                },
                "rate_limiter": {"tracked_identities": len(rate_limiter)},
            },
        }

    @app.exception_handler(QuotaGateException)
    async def quotagate_exception_handler(request: Request, exc: QuotaGateException) -> JSONResponse:
        """Map rejections to their status code and error body."""
        headers = {}
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        if exc.status_code >= 500:
            logger.error(
                f"Unhandled rejection: {exc.message}",
                extra=get_log_context(path=request.url.path, method=request.method),
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=headers,
        )

    return app


app = create_app()
