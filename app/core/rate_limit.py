"""Rate limiting wiring for the HTTP layer.

This module builds the decision engine from settings and maps decisions onto
HTTP responses.

Design goals:
- Minimal coupling: routes depend on a dependency function only.
- Swap-friendly: the store backend is chosen by the adapter factory.
- Explicit configuration: the engine receives a RateLimitPolicy; settings are
  read here and nowhere deeper.
"""

from __future__ import annotations

import math
from datetime import datetime

from app.adapters.rate_limit.base import AbstractWindowStore
from app.adapters.rate_limit.factory import create_window_store
from app.core.config import settings
from app.schemas.rate_limit import RateLimitDecision, RateLimitPolicy
from app.services.decision_engine import RateLimitDecisionEngine
from app.utils.clock import utc_now


_store: AbstractWindowStore | None = None
_engine: RateLimitDecisionEngine | None = None
_engine_policy: RateLimitPolicy | None = None


def get_window_store() -> AbstractWindowStore:
    """Return the process-wide window store, creating it on first use."""

    global _store

    if _store is None:
        _store = create_window_store(settings.store)
    return _store


def get_decision_engine() -> RateLimitDecisionEngine:
    """Return a process-wide decision engine.

    The instance is cached in-module. If the policy settings change
    (primarily in tests), the engine is rebuilt around the same store.

    Returns:
        RateLimitDecisionEngine: Configured engine.
    """

    global _engine, _engine_policy

    policy = RateLimitPolicy.from_settings(settings.rate_limit)

    if _engine is None or _engine_policy != policy:
        _engine = RateLimitDecisionEngine(get_window_store(), policy)
        _engine_policy = policy

    return _engine


async def close_window_store() -> None:
    """Close and forget the process-wide store (application shutdown)."""

    global _store, _engine, _engine_policy

    if _store is not None:
        await _store.close()
    _store = None
    _engine = None
    _engine_policy = None


def retry_after_seconds(
    decision: RateLimitDecision,
    *,
    now: datetime | None = None,
    padding_seconds: int = 0,
) -> int:
    """Convert a decision's absolute retry_after into a Retry-After delay.

    Args:
        decision: Denied decision.
        now: Reference time; defaults to the current UTC time.
        padding_seconds: Extra protocol-level grace added to the delay.

    Returns:
        Non-negative whole seconds (0 for allowed decisions).
    """

    if decision.retry_after is None:
        return 0

    reference = now or utc_now()
    remaining = (decision.retry_after - reference).total_seconds()
    return max(0, math.ceil(remaining)) + padding_seconds


def build_rate_limit_headers(
    decision: RateLimitDecision,
    *,
    limit: int,
    now: datetime | None = None,
) -> dict[str, str]:
    """Headers attached to a throttled response."""

    if not settings.rate_limit.include_headers or decision.retry_after is None:
        return {}

    return {
        "Retry-After": str(
            retry_after_seconds(
                decision,
                now=now,
                padding_seconds=settings.rate_limit.retry_after_padding_seconds,
            )
        ),
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Reset": str(int(decision.retry_after.timestamp())),
    }
