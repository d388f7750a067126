from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.core.rate_limit import build_rate_limit_headers, get_decision_engine
from app.schemas.rate_limit import RateLimitCheckResponse
from app.services.decision_engine import RateLimitDecisionEngine

router = APIRouter(tags=["Rate Limit"])

ALLOWED_MESSAGE = "Request allowed"
DENIED_MESSAGE = "Too many requests, please try again later"


@router.put(
    "/rate-limit/{identity_key}",
    response_model=RateLimitCheckResponse,
    responses={
        status.HTTP_429_TOO_MANY_REQUESTS: {
            "model": RateLimitCheckResponse,
            "description": "Rate limit exceeded; see the Retry-After header.",
        },
    },
)
async def check_rate_limit(
    identity_key: str,
    engine: RateLimitDecisionEngine = Depends(get_decision_engine),
) -> RateLimitCheckResponse | JSONResponse:
    """Consume one request from the identity key's current window.

    Args:
        identity_key: Rate-limited subject (user id, API key, IP).

    Returns:
        200 with the decision when allowed, 429 with Retry-After otherwise.
    """
    decision = await engine.decide(identity_key)

    if decision.allowed:
        return RateLimitCheckResponse(allowed=True, message=ALLOWED_MESSAGE)

    body = RateLimitCheckResponse(
        allowed=False,
        message=DENIED_MESSAGE,
        retry_after=decision.retry_after,
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body.model_dump(mode="json"),
        headers=build_rate_limit_headers(decision, limit=engine.policy.threshold) or None,
    )
