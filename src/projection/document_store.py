"""Document store contract for ledger projections.

This module defines the atomic primitives the mutator relies on
and the dotted-path helpers shared by store implementations.
"""

from __future__ import annotations

import copy
from typing import Any, Mapping, Protocol


class DocumentStore(Protocol):
    """Projection store operations.

    Every method is atomic per document. Implementations raise
    ``ProjectionWriteError`` when the backend rejects a write.
    """

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        merge: bool = False,
        defaults: Mapping[str, Any] | None = None,
    ) -> None: ...

    def update(self, collection: str, doc_id: str, partial_paths: Mapping[str, Any]) -> None: ...

    def add(self, collection: str, data: Mapping[str, Any]) -> str: ...

    def create(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> bool: ...

    def atomic_increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Mapping[str, int],
        guard_key: str | None = None,
        defaults: Mapping[str, Any] | None = None,
    ) -> bool: ...


def flatten_paths(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into dotted field paths.

    Empty nested mappings are kept as leaf values.
    """
    flattened: dict[str, Any] = {}
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping) and value:
            flattened.update(flatten_paths(value, path))
        else:
            flattened[path] = value
    return flattened


def get_path(document: Mapping[str, Any], path: str) -> Any:
    """Return the value at a dotted path, or None when absent."""
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    """Write a value at a dotted path, creating parents as needed."""
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = copy.deepcopy(value)


def without_overlapping_paths(
    defaults: Mapping[str, Any],
    written_paths: set[str],
) -> dict[str, Any]:
    """Drop default paths that equal, contain, or sit under a written path."""
    kept: dict[str, Any] = {}
    for path, value in defaults.items():
        if any(_paths_overlap(path, written) for written in written_paths):
            continue
        kept[path] = value
    return kept


def _paths_overlap(left: str, right: str) -> bool:
    return left == right or left.startswith(f"{right}.") or right.startswith(f"{left}.")
