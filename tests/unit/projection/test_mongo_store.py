"""Unit tests for the MongoDB document store against a mock database."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from bson.decimal128 import Decimal128
from pymongo.errors import AutoReconnect, DuplicateKeyError

from core.constants import FUNDING_GUARD_FIELD
from core.errors import LedgerSyncConfigError, ProjectionWriteError
from projection.mongo_store import MongoDocumentStore
from tests.ledger_fixtures import make_config


def _store() -> tuple[MongoDocumentStore, MagicMock]:
    collection = MagicMock()
    database = MagicMock()
    database.__getitem__.return_value = collection
    return MongoDocumentStore(database), collection


def test_get_strips_id_and_converts_decimals() -> None:
    """Reads should drop _id and return integral Decimal128 values as ints."""
    store, collection = _store()
    collection.find_one.return_value = {"_id": "E1", "currentFunding": Decimal128("500")}

    document = store.get("disasters", "E1")

    assert document == {"currentFunding": 500}


def test_get_returns_none_for_missing_document() -> None:
    """Missing documents should read as None."""
    store, collection = _store()
    collection.find_one.return_value = None

    assert store.get("disasters", "E1") is None


def test_create_returns_false_on_duplicate_key() -> None:
    """Duplicate inserts should report an existing document."""
    store, collection = _store()
    collection.insert_one.side_effect = DuplicateKeyError("duplicate key")

    assert store.create("transactions", "0xAA:0", {"amount": 500}) is False


def test_create_wraps_backend_failures() -> None:
    """Other pymongo failures should surface as ProjectionWriteError."""
    store, collection = _store()
    collection.insert_one.side_effect = AutoReconnect("connection reset")

    with pytest.raises(ProjectionWriteError):
        store.create("transactions", "0xAA:0", {"amount": 500})


def test_create_stores_oversized_ints_as_decimal128() -> None:
    """Integers beyond int64 should be written as Decimal128."""
    store, collection = _store()

    store.create("donations", "0xAA:1", {"amount": 2**70})

    inserted = collection.insert_one.call_args.args[0]
    assert inserted == {"_id": "0xAA:1", "amount": Decimal128(str(2**70))}


def test_atomic_increment_filters_on_guard_key() -> None:
    """Guarded increments should only match documents without the key."""
    store, collection = _store()
    collection.update_one.return_value = MagicMock(modified_count=1, upserted_id=None)

    applied = store.atomic_increment(
        "disasters", "E1", {"currentFunding": 500}, guard_key="0xAA:0"
    )

    query, pipeline = collection.update_one.call_args.args
    assert applied and query == {"_id": "E1", FUNDING_GUARD_FIELD: {"$ne": "0xAA:0"}} and (
        FUNDING_GUARD_FIELD in pipeline[0]["$set"]
    )


def test_atomic_increment_reports_upsert_as_applied() -> None:
    """Creating the document through the increment should count as applied."""
    store, collection = _store()
    collection.update_one.return_value = MagicMock(modified_count=0, upserted_id="E1")

    assert store.atomic_increment("disasters", "E1", {"currentFunding": 5}, guard_key="k")


def test_atomic_increment_skips_recorded_guard_key() -> None:
    """A duplicate upsert followed by no match should report a replay."""
    store, collection = _store()
    collection.update_one.side_effect = [
        DuplicateKeyError("duplicate key"),
        MagicMock(modified_count=0, upserted_id=None),
    ]

    applied = store.atomic_increment("disasters", "E1", {"currentFunding": 5}, guard_key="k")

    assert applied is False and collection.update_one.call_count == 2


def test_merge_set_uses_if_null_for_defaults() -> None:
    """Merge writes should only fill defaults where values are missing."""
    store, collection = _store()

    store.set(
        "disasters",
        "E1",
        {"name": "Flood"},
        merge=True,
        defaults={"currentFunding": 0},
    )

    _, pipeline = collection.update_one.call_args.args
    assert pipeline[0]["$set"] == {
        "name": {"$literal": "Flood"},
        "currentFunding": {"$ifNull": ["$currentFunding", {"$literal": 0}]},
    }


def test_update_raises_for_missing_document() -> None:
    """Partial updates that match nothing should fail."""
    store, collection = _store()
    collection.update_one.return_value = MagicMock(matched_count=0)

    with pytest.raises(ProjectionWriteError):
        store.update("users", "0x1", {"role": "vendor"})


def test_from_config_requires_mongo_uri(tmp_path: Path) -> None:
    """Building from config without a URI should fail fast."""
    with pytest.raises(LedgerSyncConfigError):
        MongoDocumentStore.from_config(make_config(tmp_path, mongo_uri=None))


def test_amount_beyond_decimal128_precision_raises_write_error() -> None:
    """Integers needing more than 34 digits should fail as ProjectionWriteError."""
    store, _ = _store()

    with pytest.raises(ProjectionWriteError, match="34 significant digits"):
        store.create("transactions", "0xAA:0", {"amount": 10**40 + 1})


def test_increment_beyond_decimal128_precision_raises_write_error() -> None:
    """Oversized increments should fail before reaching the database."""
    store, collection = _store()

    with pytest.raises(ProjectionWriteError):
        store.atomic_increment("disasters", "E1", {"currentFunding": 10**40 + 1}, guard_key="k")

    assert collection.update_one.call_count == 0


def test_close_closes_owning_client() -> None:
    """Closing the store should close the client it was built with."""
    client = MagicMock()
    store = MongoDocumentStore(MagicMock(), client=client)

    store.close()

    client.close.assert_called_once_with()
