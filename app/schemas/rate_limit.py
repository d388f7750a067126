"""Rate limit decision, policy and HTTP response schemas."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.config import RateLimitSettings


class RateLimitDecision(BaseModel):
    """Immutable allow/deny outcome of a rate limit check.

    ``retry_after`` is an absolute timestamp. It is absent on Allow and
    always present on Deny; converting it into a relative delay is left to
    the transport layer.
    """

    model_config = ConfigDict(frozen=True)

    allowed: bool = Field(
        ...,
        description="Whether the request is admitted in the current window.",
    )
    retry_after: datetime | None = Field(
        default=None,
        description="When the caller may retry (UTC). Only set when denied.",
    )

    @model_validator(mode="after")
    def _check_retry_after(self) -> "RateLimitDecision":
        if self.allowed and self.retry_after is not None:
            raise ValueError("retry_after must be empty when the request is allowed")
        if not self.allowed and self.retry_after is None:
            raise ValueError("retry_after is required when the request is denied")
        return self

    @classmethod
    def allow(cls) -> "RateLimitDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, retry_after: datetime) -> "RateLimitDecision":
        return cls(allowed=False, retry_after=retry_after)


@dataclass(frozen=True)
class BackoffPolicy:
    """Bounded exponential backoff used on write conflicts.

    Attributes:
        max_attempts: Total store attempts, including the first one.
        initial_backoff_ms: Delay before the second attempt.
        multiplier: Growth factor applied after each retry.
        jitter_ratio: Random spread applied to each delay, as a fraction of
            it. 0 keeps pure exponential timing.
    """

    max_attempts: int = 3
    initial_backoff_ms: int = 100
    multiplier: float = 2.0
    jitter_ratio: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_backoff_ms < 0:
            raise ValueError("initial_backoff_ms must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValueError("jitter_ratio must be between 0 and 1")


@dataclass(frozen=True)
class RateLimitPolicy:
    """Explicit configuration handed to the decision engine.

    Attributes:
        threshold: Maximum admitted requests per window.
        window_minutes: Window length, measured from the first request.
        ttl_sweep_grace_seconds: Assumed maximum lag of the store's TTL
            sweep behind the marked expiry.
        backoff: Retry policy for write conflicts.
    """

    threshold: int
    window_minutes: int
    ttl_sweep_grace_seconds: int = 60
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    def __post_init__(self) -> None:
        if self.threshold < 1:
            raise ValueError("threshold must be >= 1")
        if self.window_minutes < 1:
            raise ValueError("window_minutes must be >= 1")
        if self.ttl_sweep_grace_seconds < 0:
            raise ValueError("ttl_sweep_grace_seconds must be >= 0")
        if self.grace > self.window:
            raise ValueError("ttl_sweep_grace_seconds must not exceed the window length")

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)

    @property
    def grace(self) -> timedelta:
        return timedelta(seconds=self.ttl_sweep_grace_seconds)

    @classmethod
    def from_settings(cls, rate_limit_settings: RateLimitSettings) -> "RateLimitPolicy":
        """Build a policy from environment-driven settings."""
        return cls(
            threshold=rate_limit_settings.threshold,
            window_minutes=rate_limit_settings.window_minutes,
            ttl_sweep_grace_seconds=rate_limit_settings.ttl_sweep_grace_seconds,
            backoff=BackoffPolicy(
                max_attempts=rate_limit_settings.max_attempts,
                initial_backoff_ms=rate_limit_settings.initial_backoff_ms,
                multiplier=rate_limit_settings.backoff_multiplier,
                jitter_ratio=rate_limit_settings.backoff_jitter_ratio,
            ),
        )


class RateLimitCheckResponse(BaseModel):
    """HTTP body returned by the rate limit check endpoint."""

    allowed: bool = Field(
        ..., description="Whether the request is admitted."
    )
    message: str = Field(
        ..., description="Human-readable outcome."
    )
    retry_after: datetime | None = Field(
        default=None,
        description="Absolute UTC time after which the caller may retry (denied only).",
    )
