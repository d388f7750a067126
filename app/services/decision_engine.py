"""Rate limit decision engine.

Decides allow/deny for an identity key with a single atomic
increment-or-create against the shared window store:

- Success: the request is admitted.
- Uniqueness conflict: the window is full (or a concurrent creator won the
  race). The current record is fetched; if present the request is denied
  until the window ends, if already swept the request opens a fresh window.
- Write conflict: handed to the RetryCoordinator, which retries with backoff
  and fails closed once attempts run out.

The engine holds no cross-call state. Correctness under concurrency comes
entirely from the store's per-record atomicity.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from typing import Callable

from app.adapters.rate_limit.base import (
    AbstractWindowStore,
    Incremented,
    UniquenessConflict,
    WindowRecord,
    WriteConflict,
)
from app.core.errors import InvariantViolationAppError, ValidationAppError
from app.schemas.rate_limit import RateLimitDecision, RateLimitPolicy
from app.services.retry_coordinator import RetryCoordinator
from app.utils.clock import utc_now

logger = logging.getLogger(__name__)


def hash_identity_key(identity_key: str) -> str:
    """Hash the identity key for logging without exposing it."""
    return hashlib.sha256(identity_key.encode()).hexdigest()[:16]


class RateLimitDecisionEngine:
    """Fixed-window rate limit decisions over an AbstractWindowStore."""

    def __init__(
        self,
        store: AbstractWindowStore,
        policy: RateLimitPolicy,
        *,
        clock: Callable[[], datetime] = utc_now,
        retry_coordinator: RetryCoordinator | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Shared window store.
            policy: Threshold, window and backoff configuration.
            clock: Time source returning timezone-aware datetimes.
            retry_coordinator: Retry loop for write conflicts; built from
                ``policy.backoff`` when omitted.
        """
        self._store = store
        self._policy = policy
        self._clock = clock
        self._retry = retry_coordinator or RetryCoordinator(policy.backoff)

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    def proposed_expiry(self, now: datetime) -> datetime:
        """Expiry stamped on a record created at ``now``.

        The TTL grace is subtracted so that, once the sweep lag is added
        back, the record disappears roughly one window after creation.
        """
        return now + self._policy.window - self._policy.grace

    def _retry_after_from_record(self, record: WindowRecord, now: datetime) -> datetime:
        # The record is expected to be gone once the sweep lag has passed.
        # A sweep running later than assumed must not yield a past hint.
        retry_after = record.window_expires_at + self._policy.grace
        if retry_after <= now:
            retry_after = now + self._policy.grace if self._policy.grace else now + self._policy.window
        return retry_after

    async def attempt(self, identity_key: str) -> RateLimitDecision | WriteConflict:
        """Run one store attempt.

        Returns:
            The decision, or WriteConflict when the attempt must be retried.

        Raises:
            InvariantViolationAppError: If the store reports success without
                a record.
            StoreUnavailableAppError: Propagated from the store.
        """
        now = self._clock()
        outcome = await self._store.conditional_increment_or_create(
            identity_key,
            self._policy.threshold,
            self.proposed_expiry(now),
        )

        if isinstance(outcome, WriteConflict):
            return outcome

        if isinstance(outcome, Incremented):
            if outcome.record is None:
                raise InvariantViolationAppError(
                    code="store_invariant_violation",
                    message="Window store reported success without returning a record",
                    details={"operation": "conditional_increment_or_create"},
                )
            return RateLimitDecision.allow()

        if isinstance(outcome, UniquenessConflict):
            return await self._resolve_uniqueness_conflict(identity_key, now)

        raise InvariantViolationAppError(
            code="store_invariant_violation",
            message=f"Unexpected store result: {type(outcome).__name__}",
            details={"operation": "conditional_increment_or_create"},
        )

    async def _resolve_uniqueness_conflict(self, identity_key: str, now: datetime) -> RateLimitDecision:
        record = await self._store.fetch(identity_key)
        if record is None:
            # Window turned over between the write and the read.
            logger.info(
                "rate_limit.fresh_window_after_conflict",
                extra={"key_hash": hash_identity_key(identity_key)},
            )
            return RateLimitDecision.allow()

        return RateLimitDecision.deny(self._retry_after_from_record(record, now))

    def _fail_closed(self, identity_key: str) -> RateLimitDecision:
        retry_after = self._clock() + self._policy.window
        logger.warning(
            "rate_limit.fail_closed",
            extra={
                "key_hash": hash_identity_key(identity_key),
                "max_attempts": self._retry.policy.max_attempts,
            },
        )
        return RateLimitDecision.deny(retry_after)

    async def decide(self, identity_key: str) -> RateLimitDecision:
        """Decide whether the identity key may proceed.

        Args:
            identity_key: Rate-limited subject (user id, API key, IP).

        Returns:
            RateLimitDecision; denied decisions always carry retry_after.

        Raises:
            ValidationAppError: If identity_key is empty.
            StoreUnavailableAppError: If the store cannot be reached.
            InvariantViolationAppError: If the store misbehaves.
        """
        if not identity_key:
            raise ValidationAppError(
                code="invalid_identity_key",
                message="identity key must be a non-empty string",
            )

        decision = await self._retry.run(
            lambda: self.attempt(identity_key),
            lambda: self._fail_closed(identity_key),
        )

        key_hash = hash_identity_key(identity_key)
        if decision.allowed:
            logger.info(
                "rate_limit.allowed",
                extra={"key_hash": key_hash, "limit": self._policy.threshold},
            )
        else:
            logger.warning(
                "rate_limit.denied",
                extra={
                    "key_hash": key_hash,
                    "limit": self._policy.threshold,
                    "retry_after": decision.retry_after,
                },
            )
        return decision
