from __future__ import annotations

from fastapi import APIRouter, Request

from ratekeeper.core.rate_limit import derive_identifier, get_rate_limit_manager
from ratekeeper.schemas.limits import RateLimitStatusResponse

router = APIRouter(tags=["Rate Limits"])


@router.get("/limits/me", response_model=RateLimitStatusResponse)
async def get_my_limits(request: Request) -> RateLimitStatusResponse:
    """Report the caller's bucket after admission.

    The admission middleware has already consumed one token for this
    request; reading the status consumes nothing further.
    """
    manager = get_rate_limit_manager()
    state = await manager.get_status(derive_identifier(request))
    return RateLimitStatusResponse(
        limit=state.limit,
        remaining=state.remaining,
        retry_after_seconds=state.retry_after_seconds,
        interval_ms=state.interval_ms,
    )
