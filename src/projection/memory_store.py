"""In-process document store.

This module keeps projection documents in memory behind one lock.
It backs tests and local dry runs with the same atomic contract as MongoDB.
"""

from __future__ import annotations

import copy
import threading
import uuid
from typing import Any, Mapping

from core.constants import FUNDING_GUARD_FIELD
from core.errors import ProjectionWriteError
from projection.document_store import (
    flatten_paths,
    get_path,
    set_path,
    without_overlapping_paths,
)


class InMemoryDocumentStore:
    """Thread-safe dictionary-backed document store."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def list_ids(self, collection: str) -> list[str]:
        """Return document ids of a collection in insertion order."""
        with self._lock:
            return list(self._collections.get(collection, {}))

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        merge: bool = False,
        defaults: Mapping[str, Any] | None = None,
    ) -> None:
        """Write a document, merging into any existing fields when requested.

        Args:
            collection: Collection name.
            doc_id: Document id.
            data: Fields to write.
            merge: Deep-merge into the existing document instead of replacing it.
            defaults: Fields written only where the document has no value.
        """
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            existing = documents.get(doc_id)
            document = copy.deepcopy(existing) if merge and existing is not None else {}
            data_paths = flatten_paths(data)
            for path, value in data_paths.items():
                set_path(document, path, value)
            if defaults:
                _apply_defaults(document, defaults, set(data_paths))
            documents[doc_id] = document

    def update(self, collection: str, doc_id: str, partial_paths: Mapping[str, Any]) -> None:
        """Write dotted paths into an existing document.

        Raises:
            ProjectionWriteError: If the document does not exist.
        """
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            if document is None:
                raise ProjectionWriteError(
                    f"Cannot update {collection}/{doc_id}: document does not exist. "
                    "Create it with set or create first."
                )
            for path, value in partial_paths.items():
                set_path(document, path, value)

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        """Insert a document under a generated id and return the id."""
        doc_id = uuid.uuid4().hex
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(dict(data))
        return doc_id

    def create(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> bool:
        """Insert a document only if the id is unused.

        Returns:
            True when the document was created, False when it already existed.
        """
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            if doc_id in documents:
                return False
            documents[doc_id] = copy.deepcopy(dict(data))
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

        Args:
            collection: Collection name.
            doc_id: Document id; created when missing.
            deltas: Dotted paths and amounts to add.
            guard_key: Optional key recorded on the document to block replays.
            defaults: Fields written only where the document has no value.

        Returns:
            True when the increment was applied.
        """
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            document = documents.setdefault(doc_id, {})
            if guard_key is not None:
                applied_keys = document.setdefault(FUNDING_GUARD_FIELD, [])
                if guard_key in applied_keys:
                    return False
                applied_keys.append(guard_key)
            for path, delta in deltas.items():
                set_path(document, path, (get_path(document, path) or 0) + delta)
            if defaults:
                _apply_defaults(document, defaults, set(deltas))
            return True


def _apply_defaults(
    document: dict[str, Any],
    defaults: Mapping[str, Any],
    written_paths: set[str],
) -> None:
    default_paths = without_overlapping_paths(flatten_paths(defaults), written_paths)
    for path, value in default_paths.items():
        if get_path(document, path) is None:
            set_path(document, path, value)
