"""Window store interfaces.

The decision engine depends on this abstraction (not a concrete backend) so
the in-process store and the MongoDB store are interchangeable.

Conflicts are reported as values rather than exceptions. The engine inspects
them explicitly; only store outages are raised (as StoreUnavailableAppError).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class WindowRecord:
    """Persisted state of one identity key's current window.

    Attributes:
        identity_key: Rate-limited subject; unique per record.
        counter: Requests admitted in the current window.
        window_expires_at: When the store's TTL sweep may delete the record.
            Set on creation only, never extended by later increments.
        version: Incremented by the store on each successful write.
    """

    identity_key: str
    counter: int
    window_expires_at: datetime
    version: int = 0


@dataclass(frozen=True)
class Incremented:
    """The guarded increment (or create) succeeded.

    ``record`` is ``None`` only when a backend misbehaves; the engine treats
    that as an invariant violation.
    """

    record: WindowRecord | None


@dataclass(frozen=True)
class UniquenessConflict:
    """A record for the key already exists and the guard did not match.

    Raised by the store when two creators race, or when the existing
    counter already reached the threshold.
    """

    identity_key: str


@dataclass(frozen=True)
class WriteConflict:
    """Concurrent modification of an existing record; safe to retry."""

    identity_key: str


IncrementResult = Incremented | UniquenessConflict | WriteConflict


class AbstractWindowStore(ABC):
    """Interface for window record stores."""

    @abstractmethod
    async def conditional_increment_or_create(
        self,
        identity_key: str,
        threshold: int,
        new_expiry: datetime,
    ) -> IncrementResult:
        """Atomically increment the counter if below threshold, else create.

        Matches the record where ``identity_key`` equals the key and
        ``counter < threshold``, incrementing ``counter`` by one. When no
        record exists, creates one with ``counter = 1`` and
        ``window_expires_at = new_expiry``.

        Args:
            identity_key: Rate-limited subject.
            threshold: Maximum admitted requests per window.
            new_expiry: Expiry to stamp on a newly created record.

        Returns:
            Incremented, UniquenessConflict or WriteConflict.

        Raises:
            StoreUnavailableAppError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    async def fetch(self, identity_key: str) -> WindowRecord | None:
        """Fetch the record for a key.

        Returns:
            The record, or None when it does not exist (or was swept).

        Raises:
            StoreUnavailableAppError: If the store cannot be reached.
        """
        raise NotImplementedError

    async def ensure_indexes(self) -> None:
        """Create backend indexes (uniqueness, TTL). No-op by default."""

    async def close(self) -> None:
        """Release backend resources. No-op by default."""
