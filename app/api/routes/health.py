from __future__ import annotations

from fastapi import APIRouter

from app.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe for load balancers.

    Does not touch the window store: a store outage surfaces as 503 on the
    rate limit endpoint, not as a dead process.

    Returns:
        dict: ``status`` plus the configured store backend name.
    """

    return {"status": "ok", "store": settings.store.backend.lower()}
