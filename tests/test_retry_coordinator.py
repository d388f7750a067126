"""Unit tests for the write-conflict retry coordinator."""

import asyncio
import random
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from app.adapters.rate_limit.base import WriteConflict
from app.schemas.rate_limit import BackoffPolicy, RateLimitDecision
from app.services.retry_coordinator import RetryCoordinator
from conftest import NOW

FAIL_CLOSED = RateLimitDecision.deny(NOW + timedelta(minutes=1))


class TestDelays:
    def test_pure_exponential_by_default(self) -> None:
        coordinator = RetryCoordinator(BackoffPolicy(max_attempts=4, initial_backoff_ms=100))

        assert list(coordinator.delays()) == [0.1, 0.2, 0.4]

    def test_single_attempt_has_no_delay(self) -> None:
        coordinator = RetryCoordinator(BackoffPolicy(max_attempts=1))

        assert list(coordinator.delays()) == []

    def test_custom_multiplier(self) -> None:
        coordinator = RetryCoordinator(BackoffPolicy(max_attempts=3, initial_backoff_ms=50, multiplier=3))

        assert list(coordinator.delays()) == pytest.approx([0.05, 0.15])

    def test_jitter_stays_within_ratio(self) -> None:
        coordinator = RetryCoordinator(
            BackoffPolicy(max_attempts=6, initial_backoff_ms=100, jitter_ratio=0.5),
            rng=random.Random(1234),
        )

        delays = list(coordinator.delays())
        base = [0.1, 0.2, 0.4, 0.8, 1.6]

        assert len(delays) == 5
        for delay, expected in zip(delays, base):
            assert expected * 0.5 <= delay <= expected * 1.5


class TestRun:
    @pytest.mark.asyncio
    async def test_returns_first_decision_without_sleeping(self) -> None:
        sleep = AsyncMock()
        attempt = AsyncMock(return_value=RateLimitDecision.allow())
        coordinator = RetryCoordinator(BackoffPolicy(), sleep=sleep)

        decision = await coordinator.run(attempt, Mock(return_value=FAIL_CLOSED))

        assert decision.allowed is True
        assert attempt.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_write_conflicts_until_decision(self) -> None:
        sleep = AsyncMock()
        attempt = AsyncMock(
            side_effect=[WriteConflict("k"), WriteConflict("k"), RateLimitDecision.allow()]
        )
        on_exhausted = Mock(return_value=FAIL_CLOSED)
        coordinator = RetryCoordinator(BackoffPolicy(max_attempts=3), sleep=sleep)

        decision = await coordinator.run(attempt, on_exhausted)

        assert decision.allowed is True
        assert attempt.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2]
        on_exhausted.assert_not_called()

    @pytest.mark.asyncio
    async def test_exhaustion_returns_fail_closed_decision(self) -> None:
        sleep = AsyncMock()
        attempt = AsyncMock(return_value=WriteConflict("k"))
        on_exhausted = Mock(return_value=FAIL_CLOSED)
        coordinator = RetryCoordinator(BackoffPolicy(max_attempts=3), sleep=sleep)

        decision = await coordinator.run(attempt, on_exhausted)

        assert decision == FAIL_CLOSED
        assert attempt.await_count == 3
        assert sleep.await_count == 2
        on_exhausted.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_errors_from_attempt_are_not_retried(self) -> None:
        sleep = AsyncMock()
        attempt = AsyncMock(side_effect=RuntimeError("boom"))
        coordinator = RetryCoordinator(BackoffPolicy(max_attempts=3), sleep=sleep)

        with pytest.raises(RuntimeError):
            await coordinator.run(attempt, Mock(return_value=FAIL_CLOSED))

        assert attempt.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_during_backoff_propagates(self) -> None:
        """Cancelling the caller aborts the sleep instead of returning a deny."""
        first_attempt_done = asyncio.Event()
        on_exhausted = Mock(return_value=FAIL_CLOSED)

        async def attempt():
            first_attempt_done.set()
            return WriteConflict("k")

        attempt_spy = AsyncMock(side_effect=attempt)
        coordinator = RetryCoordinator(
            BackoffPolicy(max_attempts=3, initial_backoff_ms=60_000),
        )

        task = asyncio.create_task(coordinator.run(attempt_spy, on_exhausted))
        await first_attempt_done.wait()
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert attempt_spy.await_count == 1
        on_exhausted.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_around_decision_cancels_backoff(self) -> None:
        attempt = AsyncMock(return_value=WriteConflict("k"))
        on_exhausted = Mock(return_value=FAIL_CLOSED)
        coordinator = RetryCoordinator(BackoffPolicy(max_attempts=5, initial_backoff_ms=60_000))

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(coordinator.run(attempt, on_exhausted), timeout=0.05)

        assert attempt.await_count == 1
        on_exhausted.assert_not_called()
