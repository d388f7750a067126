"""Window store adapters.

This package provides a small abstraction layer so the decision engine can
run against an in-process store or a shared MongoDB collection without
changing the service or API layers.
"""

from app.adapters.rate_limit.base import (
    AbstractWindowStore,
    Incremented,
    IncrementResult,
    UniquenessConflict,
    WindowRecord,
    WriteConflict,
)
from app.adapters.rate_limit.factory import create_window_store
from app.adapters.rate_limit.in_memory import InMemoryWindowStore
from app.adapters.rate_limit.mongo import MongoWindowStore

__all__ = [
    "AbstractWindowStore",
    "InMemoryWindowStore",
    "IncrementResult",
    "Incremented",
    "MongoWindowStore",
    "UniquenessConflict",
    "WindowRecord",
    "WriteConflict",
    "create_window_store",
]
