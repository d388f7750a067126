"""Bounded exponential backoff around a single rate limit attempt.

Only write conflicts are retried. The backoff sleep is awaited on the
caller's task, so cancelling that task (for example an upstream request
timeout) aborts the sleep and propagates ``asyncio.CancelledError``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Iterator

from app.adapters.rate_limit.base import WriteConflict
from app.schemas.rate_limit import BackoffPolicy, RateLimitDecision

logger = logging.getLogger(__name__)

AttemptFn = Callable[[], Awaitable[RateLimitDecision | WriteConflict]]
ExhaustedFn = Callable[[], RateLimitDecision]
SleepFn = Callable[[float], Awaitable[None]]


class RetryCoordinator:
    """Run an attempt up to ``max_attempts`` times while it reports conflicts."""

    def __init__(
        self,
        policy: BackoffPolicy,
        *,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._policy = policy
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    def delays(self) -> Iterator[float]:
        """Yield the backoff (seconds) to wait before each retry.

        There is one delay fewer than attempts: nothing is awaited after the
        last attempt.
        """
        backoff_ms = float(self._policy.initial_backoff_ms)
        for _ in range(self._policy.max_attempts - 1):
            delay_ms = backoff_ms
            if self._policy.jitter_ratio:
                spread = backoff_ms * self._policy.jitter_ratio
                delay_ms = max(0.0, backoff_ms + self._rng.uniform(-spread, spread))
            yield delay_ms / 1000
            backoff_ms *= self._policy.multiplier

    async def run(self, attempt: AttemptFn, on_exhausted: ExhaustedFn) -> RateLimitDecision:
        """Run ``attempt`` with retries.

        Args:
            attempt: Coroutine factory performing one store attempt.
            on_exhausted: Builds the decision returned when every attempt hit
                a write conflict.

        Returns:
            The first non-conflict decision, or ``on_exhausted()``.
        """
        max_attempts = self._policy.max_attempts
        delays = list(self.delays())

        for attempt_number in range(1, max_attempts + 1):
            outcome = await attempt()
            if not isinstance(outcome, WriteConflict):
                return outcome

            delay = delays[attempt_number - 1] if attempt_number < max_attempts else None
            logger.info(
                "rate_limit.write_conflict",
                extra={
                    "attempt": attempt_number,
                    "max_attempts": max_attempts,
                    "backoff_s": delay,
                },
            )
            if delay is not None:
                await self._sleep(delay)

        return on_exhausted()
