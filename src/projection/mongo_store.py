"""MongoDB document store.

This module maps the projection store contract onto pymongo single-document
updates. Merge-upserts and guarded increments run as one pipeline update each.
"""

from __future__ import annotations

from decimal import Decimal, DecimalException
from typing import Any, Mapping

from bson.decimal128 import Decimal128
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from core.config import LedgerSyncConfig
from core.constants import FUNDING_GUARD_FIELD
from core.errors import LedgerSyncConfigError, ProjectionWriteError
from core.logging_config import get_logger
from projection.document_store import flatten_paths, without_overlapping_paths

_LOGGER = get_logger(__name__)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class MongoDocumentStore:
    """Document store backed by a pymongo database handle."""

    def __init__(self, database: Any, client: Any | None = None) -> None:
        """Wrap a pymongo database.

        Args:
            database: ``pymongo.database.Database`` or a compatible object.
            client: Owning ``MongoClient``, closed by ``close()`` when given.
        """
        self._database = database
        self._client = client

    @classmethod
    def from_config(cls, config: LedgerSyncConfig) -> "MongoDocumentStore":
        """Connect using ``LEDGER_SYNC_MONGO_URI``.

        Raises:
            LedgerSyncConfigError: If no Mongo URI is configured.
        """
        if not config.mongo_uri:
            raise LedgerSyncConfigError(
                "Projection store is not configured: LEDGER_SYNC_MONGO_URI is unset. "
                "Set it to a MongoDB connection string."
            )
        timeout_ms = int(config.request_timeout * 1000)
        client = MongoClient(
            config.mongo_uri,
            serverSelectionTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
        )
        return cls(client[config.mongo_database], client=client)

    def close(self) -> None:
        """Close the owning client connection pool, if this store has one."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        document = self._run(
            collection,
            doc_id,
            "get",
            lambda: self._database[collection].find_one({"_id": doc_id}),
        )
        if document is None:
            return None
        document.pop("_id", None)
        return _from_bson(document)

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        merge: bool = False,
        defaults: Mapping[str, Any] | None = None,
    ) -> None:
        """Write a document as one upsert.

        Args:
            collection: Collection name.
            doc_id: Document id.
            data: Fields to write.
            merge: Deep-merge into the existing document instead of replacing it.
            defaults: Fields written only where the document has no value.
        """
        if not merge:
            replacement = _to_bson(dict(data))
            for path, value in without_overlapping_paths(
                flatten_paths(defaults or {}), set(flatten_paths(data))
            ).items():
                _set_nested(replacement, path, _to_bson(value))
            self._run(
                collection,
                doc_id,
                "replace",
                lambda: self._database[collection].replace_one(
                    {"_id": doc_id}, replacement, upsert=True
                ),
            )
            return
        data_paths = flatten_paths(data)
        stage = {path: {"$literal": _to_bson(value)} for path, value in data_paths.items()}
        stage.update(_if_null_stage(defaults, set(data_paths)))
        self._run(
            collection,
            doc_id,
            "merge",
            lambda: self._database[collection].update_one(
                {"_id": doc_id}, [{"$set": stage}], upsert=True
            ),
        )

    def update(self, collection: str, doc_id: str, partial_paths: Mapping[str, Any]) -> None:
        """Write dotted paths into an existing document.

        Raises:
            ProjectionWriteError: If the document does not exist or the write fails.
        """
        fields = {path: _to_bson(value) for path, value in partial_paths.items()}
        result = self._run(
            collection,
            doc_id,
            "update",
            lambda: self._database[collection].update_one({"_id": doc_id}, {"$set": fields}),
        )
        if result.matched_count == 0:
            raise ProjectionWriteError(
                f"Cannot update {collection}/{doc_id}: document does not exist. "
                "Create it with set or create first."
            )

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        """Insert a document under a generated ObjectId and return it as text."""
        result = self._run(
            collection,
            "<new>",
            "add",
            lambda: self._database[collection].insert_one(_to_bson(dict(data))),
        )
        return str(result.inserted_id)

    def create(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> bool:
        """Insert a document only if the id is unused."""
        document = {"_id": doc_id, **_to_bson(dict(data))}
        try:
            self._run(
                collection,
                doc_id,
                "create",
                lambda: self._database[collection].insert_one(document),
                passthrough=(DuplicateKeyError,),
            )
        except DuplicateKeyError:
            return False
        return True

    def atomic_increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Mapping[str, int],
        guard_key: str | None = None,
        defaults: Mapping[str, Any] | None = None,
    ) -> bool:
        """Increment numeric fields, at most once per guard key.

        The guard key is stored in the same document, so the membership check,
        the key append, and the increment commit together.

        Returns:
            True when the increment was applied.
        """
        stage: dict[str, Any] = {
            path: {"$add": [{"$ifNull": [f"${path}", _decimal(0)]}, _decimal(delta)]}
            for path, delta in deltas.items()
        }
        query: dict[str, Any] = {"_id": doc_id}
        if guard_key is not None:
            query[FUNDING_GUARD_FIELD] = {"$ne": guard_key}
            stage[FUNDING_GUARD_FIELD] = {
                "$concatArrays": [
                    {"$ifNull": [f"${FUNDING_GUARD_FIELD}", []]},
                    [{"$literal": guard_key}],
                ]
            }
        stage.update(_if_null_stage(defaults, set(deltas)))
        pipeline = [{"$set": stage}]
        collection_handle = self._database[collection]
        try:
            result = self._run(
                collection,
                doc_id,
                "increment",
                lambda: collection_handle.update_one(query, pipeline, upsert=True),
                passthrough=(DuplicateKeyError,),
            )
        except DuplicateKeyError:
            # The document exists: either the key is already recorded or a
            # concurrent upsert created it first.
            result = self._run(
                collection,
                doc_id,
                "increment",
                lambda: collection_handle.update_one(query, pipeline),
            )
            return result.modified_count == 1
        return result.modified_count == 1 or result.upserted_id is not None

    def _run(
        self,
        collection: str,
        doc_id: str,
        operation: str,
        action: Any,
        passthrough: tuple[type[Exception], ...] = (),
    ) -> Any:
        try:
            return action()
        except passthrough:
            raise
        except PyMongoError as error:
            _LOGGER.warning(
                "mongo_operation_failed",
                collection=collection,
                doc_id=doc_id,
                operation=operation,
                error=str(error),
            )
            raise ProjectionWriteError(
                f"MongoDB {operation} on {collection}/{doc_id} failed: {error}. "
                "Check database connectivity and retry the sync."
            ) from error


def _if_null_stage(
    defaults: Mapping[str, Any] | None,
    written_paths: set[str],
) -> dict[str, Any]:
    if not defaults:
        return {}
    default_paths = without_overlapping_paths(flatten_paths(defaults), written_paths)
    return {
        path: {"$ifNull": [f"${path}", {"$literal": _to_bson(value)}]}
        for path, value in default_paths.items()
    }


def _set_nested(document: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _decimal(value: int) -> Any:
    """Convert an integer to Decimal128.

    Raises:
        ProjectionWriteError: If the integer needs more than 34 significant digits.
    """
    try:
        return Decimal128(str(value))
    except DecimalException as error:
        raise ProjectionWriteError(
            f"Amount {value} exceeds the 34 significant digits MongoDB Decimal128 can hold. "
            "Project this ledger into a store with arbitrary-precision integers."
        ) from error


def _to_bson(value: Any) -> Any:
    """Convert values BSON cannot hold natively, such as ints beyond int64."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and not _INT64_MIN <= value <= _INT64_MAX:
        return _decimal(value)
    if isinstance(value, Mapping):
        return {key: _to_bson(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_bson(item) for item in value]
    return value


def _from_bson(value: Any) -> Any:
    """Convert integral Decimal128 values back to Python ints."""
    if isinstance(value, Decimal128):
        decimal_value: Decimal = value.to_decimal()
        if decimal_value == decimal_value.to_integral_value():
            return int(decimal_value)
        return decimal_value
    if isinstance(value, dict):
        return {key: _from_bson(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_from_bson(item) for item in value]
    return value
