"""Factory pattern for creating window store instances."""

from app.adapters.rate_limit.base import AbstractWindowStore
from app.adapters.rate_limit.in_memory import InMemoryWindowStore
from app.adapters.rate_limit.mongo import MongoWindowStore
from app.core.config import StoreSettings, settings
from app.core.errors import ValidationAppError


def create_window_store(store_settings: StoreSettings | None = None) -> AbstractWindowStore:
    """Factory function to instantiate window stores based on backend.

    Reads configuration from app.core.config.settings unless explicit store
    settings are given.

    Returns:
        AbstractWindowStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown or misconfigured.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        sweep_lag = cfg.sweep_lag_seconds
        if sweep_lag is None:
            sweep_lag = settings.rate_limit.ttl_sweep_grace_seconds
        return InMemoryWindowStore(sweep_lag_seconds=sweep_lag)

    if backend == "mongodb":
        if not cfg.mongodb_uri:
            raise ValidationAppError(
                code="store_missing_uri",
                message="MongoDB backend requires STORE_MONGODB_URI environment variable",
            )
        return MongoWindowStore.from_uri(
            cfg.mongodb_uri,
            database=cfg.database,
            collection=cfg.collection,
            server_selection_timeout_ms=cfg.server_selection_timeout_ms,
        )

    raise ValidationAppError(
        code="store_unknown_backend",
        message=(
            f"Unknown store backend: '{backend}'. Supported backends: memory, mongodb"
        ),
    )
