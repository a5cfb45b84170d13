"""Daily AI token usage endpoint."""

from typing import Any

from fastapi import APIRouter, Depends

from quotagate.app.api.dependencies import PrincipalDep, QuotaGuardDep, rate_limited

router = APIRouter(prefix="/api/ai", tags=["ai"])


@router.get("/usage", dependencies=[Depends(rate_limited())])
async def get_token_usage(principal_id: PrincipalDep, quota_guard: QuotaGuardDep) -> dict[str, Any]:
    """Return today's token usage for the calling principal.

    ``success`` is False when usage tracking is disabled; the numbers are
    then the permissive defaults.
    """
    snapshot = await quota_guard.get_usage(principal_id)
    return {"success": snapshot.tracked, "data": snapshot.to_dict()}
