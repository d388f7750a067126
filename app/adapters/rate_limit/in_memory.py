"""In-memory window store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state, so it stays atomic when
  several threads drive their own event loops against one instance.
- Emulates a TTL sweep that lags behind the marked expiry by
  ``sweep_lag_seconds``; records are invisible only once the sweep ran.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable

from app.adapters.rate_limit.base import (
    AbstractWindowStore,
    IncrementResult,
    Incremented,
    UniquenessConflict,
    WindowRecord,
)
from app.utils.clock import utc_now


class InMemoryWindowStore(AbstractWindowStore):
    """Window store keeping records in a dict guarded by a lock.

    Semantics mirror a document store doing an upsert on a unique key: when
    the record exists but its counter already reached the threshold, the
    upsert collides with the existing key and a UniquenessConflict is
    reported.
    """

    def __init__(
        self,
        *,
        sweep_lag_seconds: float = 0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            sweep_lag_seconds: How long after ``window_expires_at`` a record
                is actually removed.
            clock: Time source returning timezone-aware datetimes.

        Raises:
            ValueError: If sweep_lag_seconds is negative.
        """
        if sweep_lag_seconds < 0:
            raise ValueError("sweep_lag_seconds must be >= 0")

        self._sweep_lag = timedelta(seconds=sweep_lag_seconds)
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, WindowRecord] = {}

    def _is_swept(self, record: WindowRecord, now: datetime) -> bool:
        return now >= record.window_expires_at + self._sweep_lag

    def _sweep_locked(self, identity_key: str) -> None:
        record = self._records.get(identity_key)
        if record is not None and self._is_swept(record, self._clock()):
            del self._records[identity_key]

    def _evict_expired_locked(self) -> None:
        now = self._clock()
        expired_keys = [k for k, record in self._records.items() if self._is_swept(record, now)]
        for key in expired_keys:
            del self._records[key]

    async def conditional_increment_or_create(
        self,
        identity_key: str,
        threshold: int,
        new_expiry: datetime,
    ) -> IncrementResult:
        with self._lock:
            self._evict_expired_locked()
            record = self._records.get(identity_key)

            if record is None:
                record = WindowRecord(
                    identity_key=identity_key,
                    counter=1,
                    window_expires_at=new_expiry,
                    version=1,
                )
                self._records[identity_key] = record
                return Incremented(record)

            if record.counter < threshold:
                record = replace(record, counter=record.counter + 1, version=record.version + 1)
                self._records[identity_key] = record
                return Incremented(record)

            return UniquenessConflict(identity_key)

    async def fetch(self, identity_key: str) -> WindowRecord | None:
        with self._lock:
            self._sweep_locked(identity_key)
            return self._records.get(identity_key)

    def stats(self) -> dict[str, int | float]:
        """Return lightweight store metrics without exposing keys."""

        with self._lock:
            return {
                "records": len(self._records),
                "sweep_lag_seconds": self._sweep_lag.total_seconds(),
            }
