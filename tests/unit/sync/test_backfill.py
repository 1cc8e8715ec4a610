"""Unit tests for the backfill coordinator."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from core.constants import DISASTERS_COLLECTION, TRANSACTIONS_COLLECTION
from core.errors import BackfillError, LedgerSyncError
from core.retry import RetryPolicy
from core.types import DomainEvent
from projection.memory_store import InMemoryDocumentStore
from projection.mutator import ProjectionMutator
from sync.backfill import BackfillCoordinator
from sync.cursor_store import SyncCursorStore
from sync.event_pipeline import EventPipeline
from tests.ledger_fixtures import (
    MANAGER_ADDRESS,
    FakeLedgerClient,
    FlakyDocumentStore,
    distribution_log,
    emergency_log,
    unknown_log,
)

_FAST_RETRY = RetryPolicy(max_retries=1, base_delay=0.001)


class _RecordingMutator(ProjectionMutator):
    def __init__(self, store: InMemoryDocumentStore) -> None:
        super().__init__(store, _FAST_RETRY, MANAGER_ADDRESS)
        self.applied: list[DomainEvent] = []

    def apply(self, event: DomainEvent):
        self.applied.append(event)
        return super().apply(event)


def _coordinator(
    tmp_path: Path,
    ledger: FakeLedgerClient,
    store: InMemoryDocumentStore | None = None,
    batch_size: int = 50,
    confirmation_depth: int = 0,
) -> tuple[BackfillCoordinator, _RecordingMutator, SyncCursorStore]:
    mutator = _RecordingMutator(store if store is not None else InMemoryDocumentStore())
    cursor = SyncCursorStore(tmp_path)
    coordinator = BackfillCoordinator(
        ledger,
        EventPipeline(mutator),
        cursor,
        batch_size=batch_size,
        confirmation_depth=confirmation_depth,
    )
    return coordinator, mutator, cursor


def test_backfill_applies_events_in_ledger_order_per_type(tmp_path: Path) -> None:
    """Events of one type should apply in (block, log index) order."""
    ledger = FakeLedgerClient()
    ledger.add(
        distribution_log(block_number=12, amount=3, log_index=0),
        distribution_log(block_number=10, amount=1, log_index=5),
        distribution_log(block_number=10, amount=2, log_index=7),
    )
    coordinator, mutator, _ = _coordinator(tmp_path, ledger)

    coordinator.run(0, 20)

    assert [event.position for event in mutator.applied] == sorted(
        event.position for event in mutator.applied
    )


def test_backfill_advances_cursor_to_end_block(tmp_path: Path) -> None:
    """A complete pass should move the cursor to the end block."""
    ledger = FakeLedgerClient(head=120)
    ledger.add(distribution_log(block_number=30, amount=1))
    coordinator, _, cursor = _coordinator(tmp_path, ledger)

    report = coordinator.run(0, 120)

    assert report.cursor_block == 120 and cursor.load() == 120


def test_backfill_queries_in_chunks(tmp_path: Path) -> None:
    """The range should be split into batch-size block chunks."""
    ledger = FakeLedgerClient(head=120)
    coordinator, _, _ = _coordinator(tmp_path, ledger, batch_size=50)

    coordinator.run(0, 120)

    ranges = sorted({(start, end) for _, start, end in ledger.queries})
    assert ranges == [(0, 49), (50, 99), (100, 120)]


def test_latest_resolves_with_confirmation_depth(tmp_path: Path) -> None:
    """'latest' should stop confirmation-depth blocks behind head."""
    ledger = FakeLedgerClient(head=100)
    coordinator, _, _ = _coordinator(tmp_path, ledger, confirmation_depth=6)

    report = coordinator.run(0, "latest")

    assert report.to_block == 94


def test_backfill_skips_undecodable_logs(tmp_path: Path) -> None:
    """An undecodable log should not stop later known events."""
    ledger = FakeLedgerClient()
    ledger.add(distribution_log(block_number=3, amount=10), distribution_log(4, amount=20))
    corrupt = distribution_log(block_number=2, amount=5)
    ledger.logs.append(replace(corrupt, data="0x00"))
    coordinator, _, _ = _coordinator(tmp_path, ledger)

    report = coordinator.run(0, 10)

    assert (report.applied_count, report.skipped_count) == (2, 1)


def test_unknown_signatures_are_never_queried(tmp_path: Path) -> None:
    """Logs with untracked signatures should not reach the pipeline."""
    ledger = FakeLedgerClient()
    ledger.add(unknown_log(block_number=2), emergency_log(block_number=3))
    coordinator, mutator, _ = _coordinator(tmp_path, ledger)

    coordinator.run(0, 10)

    assert len(mutator.applied) == 1


def test_rerun_reports_duplicates(tmp_path: Path) -> None:
    """Re-running a range should apply nothing new."""
    ledger = FakeLedgerClient()
    ledger.add(distribution_log(block_number=3, amount=10))
    coordinator, _, _ = _coordinator(tmp_path, ledger)
    coordinator.run(0, 10)

    report = coordinator.run(0, 10)

    assert (report.applied_count, report.duplicate_count) == (0, 1)


def test_write_failure_raises_backfill_error_with_position(tmp_path: Path) -> None:
    """A persistent write failure should report the last good position and key."""
    ledger = FakeLedgerClient()
    ledger.add(
        emergency_log(block_number=1),
        distribution_log(block_number=4, amount=10, transaction_hash="0xDD"),
    )
    store = FlakyDocumentStore(failures=-1, method="create")
    coordinator, _, _ = _coordinator(tmp_path, ledger, store=store)

    with pytest.raises(BackfillError) as error_info:
        coordinator.run(0, 10)

    error = error_info.value
    assert (error.failed_key, error.last_position.block_number) == ("0xDD:0", 1)


def test_failed_chunk_keeps_cursor_at_last_completed_chunk(tmp_path: Path) -> None:
    """The cursor should not advance past a failing chunk."""
    ledger = FakeLedgerClient(head=120)
    ledger.add(distribution_log(block_number=70, amount=10))
    store = FlakyDocumentStore(failures=-1, method="create")
    coordinator, _, cursor = _coordinator(tmp_path, ledger, store=store, batch_size=50)

    with pytest.raises(BackfillError):
        coordinator.run(0, 120)

    assert cursor.load() == 49


def test_query_failure_raises_backfill_error(tmp_path: Path) -> None:
    """A ledger query failure should abort the pass."""
    ledger = FakeLedgerClient(head=10)
    ledger.failing_queries["FundsDistributed"] = 1
    coordinator, _, _ = _coordinator(tmp_path, ledger)

    with pytest.raises(BackfillError) as error_info:
        coordinator.run(0, 10)

    assert error_info.value.failed_key is None


def test_resolve_block_rejects_unknown_tags(tmp_path: Path) -> None:
    """Only block numbers and 'latest' should be accepted."""
    coordinator, _, _ = _coordinator(tmp_path, FakeLedgerClient())

    with pytest.raises(LedgerSyncError):
        coordinator.resolve_block("pending")


def test_empty_range_returns_without_queries(tmp_path: Path) -> None:
    """A range ending before it starts should do nothing."""
    ledger = FakeLedgerClient(head=5)
    coordinator, _, _ = _coordinator(tmp_path, ledger)

    report = coordinator.run(10, 5)

    assert report.applied_count == 0 and ledger.queries == []


def test_funding_total_matches_ledger(tmp_path: Path) -> None:
    """Backfilled funding should equal the sum of distributions."""
    ledger = FakeLedgerClient()
    ledger.add(*(distribution_log(block_number=block, amount=block) for block in range(1, 30)))
    store = InMemoryDocumentStore()
    coordinator, _, _ = _coordinator(tmp_path, ledger, store=store, batch_size=7)

    coordinator.run(0, 40)

    disaster = store.get(DISASTERS_COLLECTION, "1")
    assert disaster is not None and disaster["currentFunding"] == sum(range(1, 30)) and (
        len(store.list_ids(TRANSACTIONS_COLLECTION)) == 29
    )


def test_range_past_a_gap_keeps_cursor(tmp_path: Path) -> None:
    """A range that does not join the cursor should leave it in place."""
    ledger = FakeLedgerClient(head=600)
    coordinator, _, cursor = _coordinator(tmp_path, ledger)
    coordinator.run(0, 100)

    report = coordinator.run(500, 600)

    assert report.cursor_block == 100 and cursor.load() == 100


def test_range_past_a_gap_still_applies_events(tmp_path: Path) -> None:
    """Events past a gap should be applied even though the cursor holds."""
    ledger = FakeLedgerClient(head=600)
    ledger.add(distribution_log(block_number=550, amount=1))
    store = InMemoryDocumentStore()
    coordinator, _, _ = _coordinator(tmp_path, ledger, store=store)
    coordinator.run(0, 100)

    report = coordinator.run(500, 600)

    assert report.applied_count == 1


def test_first_range_above_start_block_keeps_cursor_unset(tmp_path: Path) -> None:
    """Without a cursor, only a range from the start block may set it."""
    ledger = FakeLedgerClient(head=80)
    coordinator, _, cursor = _coordinator(tmp_path, ledger)

    coordinator.run(40, 80)

    assert cursor.load() is None


def test_overlapping_range_extends_cursor(tmp_path: Path) -> None:
    """A range that starts inside the cursor should carry it forward."""
    ledger = FakeLedgerClient(head=200)
    coordinator, _, cursor = _coordinator(tmp_path, ledger)
    coordinator.run(0, 100)

    coordinator.run(60, 200)

    assert cursor.load() == 200
