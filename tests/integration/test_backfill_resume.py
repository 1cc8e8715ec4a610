"""Integration tests for interrupted and resumed backfill."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.constants import (
    DISASTERS_COLLECTION,
    DONATIONS_COLLECTION,
    TRANSACTIONS_COLLECTION,
    USERS_COLLECTION,
    VENDORS_COLLECTION,
)
from core.errors import BackfillError, ProjectionWriteError
from projection.memory_store import InMemoryDocumentStore
from sync.orchestrator import SyncOrchestrator
from tests.ledger_fixtures import (
    BENEFICIARY,
    DONOR,
    TOKEN,
    VENDOR,
    FakeLedgerClient,
    distribution_log,
    emergency_log,
    make_config,
    make_log,
    unknown_log,
)


class _CrashAfterBlockStore(InMemoryDocumentStore):
    """Store that rejects inserts for blocks after a limit while armed."""

    def __init__(self, last_good_block: int) -> None:
        super().__init__()
        self.last_good_block = last_good_block
        self.armed = True

    def create(self, collection, doc_id, data) -> bool:
        if self.armed and data.get("blockNumber", 0) > self.last_good_block:
            raise ProjectionWriteError("forced crash.")
        return super().create(collection, doc_id, data)


def _ledger() -> FakeLedgerClient:
    ledger = FakeLedgerClient(head=220)
    ledger.add(emergency_log(block_number=100, event_id=1))
    for block in range(101, 200, 3):
        ledger.add(distribution_log(block_number=block, amount=block, log_index=1))
    ledger.add(
        unknown_log(block_number=130),
        make_log(
            "BeneficiaryWhitelisted",
            {"beneficiary": BENEFICIARY, "eventId": 1, "status": True},
            block_number=120,
        ),
        make_log("VendorWhitelisted", {"vendor": VENDOR, "status": True}, block_number=140),
        make_log(
            "FundsSpent",
            {"beneficiary": BENEFICIARY, "vendor": VENDOR, "amount": 9, "category": b"food"},
            block_number=160,
        ),
        make_log("FundsDonated", {"donor": DONOR, "token": TOKEN, "amount": 70}, block_number=190),
    )
    return ledger


def _snapshot(store: InMemoryDocumentStore) -> dict[str, dict]:
    collections = (
        DISASTERS_COLLECTION,
        TRANSACTIONS_COLLECTION,
        USERS_COLLECTION,
        VENDORS_COLLECTION,
        DONATIONS_COLLECTION,
    )
    return {
        name: {doc_id: store.get(name, doc_id) for doc_id in sorted(store.list_ids(name))}
        for name in collections
    }


def _run(data_root: Path, store: InMemoryDocumentStore) -> SyncOrchestrator:
    orchestrator = SyncOrchestrator(
        make_config(data_root, batch_size=10, start_block=100), store=store, ledger_client=_ledger()
    )
    orchestrator.initialize()
    return orchestrator


def test_interrupted_range_resumes_to_identical_state(tmp_path: Path) -> None:
    """Rerunning an interrupted range should match an uninterrupted run."""
    reference_store = InMemoryDocumentStore()
    _run(tmp_path / "reference", reference_store).sync_range(100, 200)
    crashing_store = _CrashAfterBlockStore(last_good_block=150)
    orchestrator = _run(tmp_path / "resumed", crashing_store)
    with pytest.raises(BackfillError):
        orchestrator.sync_range(100, 200)
    crashing_store.armed = False

    orchestrator.sync_range(100, 200)

    assert _snapshot(crashing_store) == _snapshot(reference_store)


def test_interrupted_range_reports_last_processed_block(tmp_path: Path) -> None:
    """The failure should report progress no later than the crash point."""
    orchestrator = _run(tmp_path, _CrashAfterBlockStore(last_good_block=150))

    with pytest.raises(BackfillError) as error_info:
        orchestrator.sync_range(100, 200)

    last_position = error_info.value.last_position
    assert last_position is not None and last_position.block_number <= 150 and (
        orchestrator.health().last_processed_block == 149
    )


def test_resume_after_interruption_continues_from_cursor(tmp_path: Path) -> None:
    """Resuming from the cursor should complete the missing blocks."""
    store = _CrashAfterBlockStore(last_good_block=150)
    orchestrator = _run(tmp_path, store)
    with pytest.raises(BackfillError):
        orchestrator.sync_range(100, 200)
    store.armed = False

    report = orchestrator.sync_from_cursor()

    disaster = store.get(DISASTERS_COLLECTION, "1")
    assert report.from_block == 150 and disaster is not None and (
        disaster["currentFunding"] == sum(range(101, 200, 3))
    )
