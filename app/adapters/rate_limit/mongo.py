"""MongoDB-backed window store.

One document per identity key, keyed by ``_id`` so the server enforces
uniqueness. A TTL index on ``expirationTime`` (``expireAfterSeconds=0``) lets
MongoDB delete the document once the window is over; the TTL monitor runs
roughly every 60 seconds, so deletion lags the marked time.

Error mapping:
- DuplicateKeyError (11000) -> UniquenessConflict
- WriteConflict (112) / TransientTransactionError -> WriteConflict
- connection failures and any other PyMongoError -> StoreUnavailableAppError
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from pymongo import ASCENDING, AsyncMongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from app.adapters.rate_limit.base import (
    AbstractWindowStore,
    IncrementResult,
    Incremented,
    UniquenessConflict,
    WindowRecord,
    WriteConflict,
)
from app.core.errors import StoreUnavailableAppError

logger = logging.getLogger(__name__)

WRITE_CONFLICT_CODE = 112
COUNTER_FIELD = "counter"
EXPIRY_FIELD = "expirationTime"
VERSION_FIELD = "version"
TTL_INDEX_NAME = "expirationTime"


def _to_record(document: Mapping[str, Any]) -> WindowRecord:
    expires_at = document[EXPIRY_FIELD]
    if expires_at.tzinfo is None:
        # BSON dates are UTC; clients built without tz_aware return them naive.
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return WindowRecord(
        identity_key=document["_id"],
        counter=int(document[COUNTER_FIELD]),
        window_expires_at=expires_at,
        version=int(document.get(VERSION_FIELD, 0)),
    )


def _is_write_conflict(exc: OperationFailure) -> bool:
    return exc.code == WRITE_CONFLICT_CODE or exc.has_error_label("TransientTransactionError")


class MongoWindowStore(AbstractWindowStore):
    """Window store using ``find_one_and_update`` with ``upsert``.

    The filter ``{_id: key, counter: {$lt: threshold}}`` and the ``$inc`` run
    as one atomic server-side operation. When the document exists but the
    guard fails, the upsert tries to insert a second document with the same
    ``_id`` and the server rejects it with a duplicate key error.
    """

    def __init__(self, collection: Any, *, client: AsyncMongoClient | None = None) -> None:
        """Initialize the store.

        Args:
            collection: Async collection holding the window documents.
            client: Owning client, closed by ``close()`` when provided.
        """
        self._collection = collection
        self._client = client

    @classmethod
    def from_uri(
        cls,
        uri: str,
        *,
        database: str,
        collection: str,
        server_selection_timeout_ms: int = 2000,
    ) -> "MongoWindowStore":
        """Build a store owning its own client.

        ``tz_aware`` makes the driver return UTC-aware datetimes so expiry
        arithmetic against the engine clock is well-defined.
        """
        client: AsyncMongoClient = AsyncMongoClient(
            uri,
            tz_aware=True,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
        )
        return cls(client[database][collection], client=client)

    async def ensure_indexes(self) -> None:
        try:
            await self._collection.create_index(
                [(EXPIRY_FIELD, ASCENDING)],
                name=TTL_INDEX_NAME,
                expireAfterSeconds=0,
            )
        except PyMongoError as exc:
            raise self._unavailable("ensure_indexes", exc) from exc

    async def conditional_increment_or_create(
        self,
        identity_key: str,
        threshold: int,
        new_expiry: datetime,
    ) -> IncrementResult:
        try:
            document = await self._collection.find_one_and_update(
                {"_id": identity_key, COUNTER_FIELD: {"$lt": threshold}},
                {
                    "$inc": {COUNTER_FIELD: 1, VERSION_FIELD: 1},
                    "$setOnInsert": {EXPIRY_FIELD: new_expiry},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            return UniquenessConflict(identity_key)
        except OperationFailure as exc:
            if _is_write_conflict(exc):
                return WriteConflict(identity_key)
            raise self._unavailable("find_one_and_update", exc) from exc
        except PyMongoError as exc:
            raise self._unavailable("find_one_and_update", exc) from exc

        if document is None:
            return Incremented(None)
        return Incremented(_to_record(document))

    async def fetch(self, identity_key: str) -> WindowRecord | None:
        try:
            document = await self._collection.find_one({"_id": identity_key})
        except PyMongoError as exc:
            raise self._unavailable("find_one", exc) from exc

        if document is None:
            return None
        return _to_record(document)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    @staticmethod
    def _unavailable(operation: str, exc: Exception) -> StoreUnavailableAppError:
        logger.error(
            "store.unavailable",
            extra={
                "backend": "mongodb",
                "operation": operation,
                "error_type": type(exc).__name__,
            },
        )
        return StoreUnavailableAppError(
            code="store_unavailable",
            message="Rate limit store is unavailable",
            details={"backend": "mongodb", "operation": operation},
        )
