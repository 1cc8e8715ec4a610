"""Historical catch-up over a closed block range.

This module walks the range in block chunks, applies every tracked event
type in ledger order per chunk, and checkpoints the cursor after each chunk.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.constants import LATEST_BLOCK
from core.errors import (
    BackfillError,
    LedgerQueryError,
    LedgerSyncError,
    ProjectionWriteError,
)
from core.logging_config import get_logger
from core.types import ApplyOutcome, BackfillReport, BlockTag, LedgerPosition
from ledger.client import LedgerClient
from ledger.event_registry import TRACKED_EVENT_SPECS, EventSpec
from projection.idempotency import derive_idempotency_key
from sync.cursor_store import SyncCursorStore
from sync.event_pipeline import EventPipeline

_LOGGER = get_logger(__name__)


@dataclass
class _BackfillTally:
    """Mutable counters for one backfill pass."""

    applied: int = 0
    duplicates: int = 0
    skipped: int = 0
    last_position: LedgerPosition | None = None

    def record(self, outcome: ApplyOutcome | None, position: LedgerPosition) -> None:
        if outcome is None:
            self.skipped += 1
            return
        if outcome is ApplyOutcome.APPLIED:
            self.applied += 1
        else:
            self.duplicates += 1
        self.last_position = position


class BackfillCoordinator:
    """Drives backfill passes for the tracked event types."""

    def __init__(
        self,
        ledger_client: LedgerClient,
        pipeline: EventPipeline,
        cursor_store: SyncCursorStore,
        batch_size: int,
        confirmation_depth: int = 0,
        start_block: int = 0,
        specs: tuple[EventSpec, ...] = TRACKED_EVENT_SPECS,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"Backfill batch size must be positive, got {batch_size}.")
        self._ledger_client = ledger_client
        self._pipeline = pipeline
        self._cursor_store = cursor_store
        self._batch_size = batch_size
        self._confirmation_depth = confirmation_depth
        self._start_block = start_block
        self._specs = specs

    def resolve_block(self, block: BlockTag) -> int:
        """Resolve a block tag to a block number.

        ``"latest"`` resolves to the ledger head minus the confirmation depth.

        Raises:
            LedgerSyncError: If the tag is neither an integer nor ``"latest"``.
            LedgerQueryError: If the ledger head cannot be read.
        """
        if isinstance(block, bool):
            raise LedgerSyncError(f"Invalid block tag {block!r}. Use a block number or 'latest'.")
        if isinstance(block, int):
            return block
        if block == LATEST_BLOCK:
            return self._ledger_client.block_number() - self._confirmation_depth
        raise LedgerSyncError(f"Invalid block tag {block!r}. Use a block number or 'latest'.")

    def run(self, from_block: int, to_block: BlockTag = LATEST_BLOCK) -> BackfillReport:
        """Backfill a closed block range.

        The cursor only advances over chunks that join it, so a range past a
        gap is applied without hiding the unprocessed blocks before it.

        Args:
            from_block: First block, inclusive.
            to_block: Last block, inclusive, or ``"latest"``.

        Returns:
            Counts and final cursor of the completed pass.

        Raises:
            LedgerSyncError: If the range is invalid.
            BackfillError: If a ledger query or projection write fails for good.
                The cursor stays at the last completed chunk.
        """
        if from_block < 0:
            raise LedgerSyncError(
                f"Invalid backfill start block {from_block}. Use a non-negative block number."
            )
        try:
            end_block = self.resolve_block(to_block)
        except LedgerQueryError as error:
            raise BackfillError(
                f"Backfill could not resolve end block {to_block!r}: {error}",
            ) from error
        tally = _BackfillTally()
        cursor_block = self._cursor_store.load()
        if end_block < from_block:
            _LOGGER.info("backfill_range_empty", from_block=from_block, to_block=end_block)
            return _build_report(from_block, end_block, tally, cursor_block)
        _LOGGER.info("backfill_started", from_block=from_block, to_block=end_block)
        for chunk_start in range(from_block, end_block + 1, self._batch_size):
            chunk_end = min(chunk_start + self._batch_size - 1, end_block)
            self._process_chunk(chunk_start, chunk_end, tally)
            if chunk_start > self._next_cursor_block(cursor_block):
                _LOGGER.warning(
                    "backfill_cursor_not_contiguous",
                    from_block=chunk_start,
                    to_block=chunk_end,
                    cursor_block=cursor_block,
                )
                continue
            cursor_block = self._cursor_store.advance(chunk_end)
            _LOGGER.info(
                "backfill_chunk_completed",
                from_block=chunk_start,
                to_block=chunk_end,
                cursor_block=cursor_block,
            )
        report = _build_report(from_block, end_block, tally, cursor_block)
        _LOGGER.info(
            "backfill_completed",
            from_block=report.from_block,
            to_block=report.to_block,
            applied=report.applied_count,
            duplicates=report.duplicate_count,
            skipped=report.skipped_count,
        )
        return report

    def _next_cursor_block(self, cursor_block: int | None) -> int:
        """Return the first block the cursor does not cover yet."""
        return cursor_block + 1 if cursor_block is not None else self._start_block

    def _process_chunk(self, chunk_start: int, chunk_end: int, tally: _BackfillTally) -> None:
        for spec in self._specs:
            try:
                logs = self._ledger_client.query_events(spec, chunk_start, chunk_end)
            except LedgerQueryError as error:
                raise self._abort(
                    f"Backfill query for {spec.event_type} in blocks "
                    f"{chunk_start}-{chunk_end} failed: {error}",
                    tally,
                    None,
                    error,
                ) from error
            for log in sorted(logs, key=lambda item: item.position):
                try:
                    outcome = self._pipeline.process(log)
                except ProjectionWriteError as error:
                    failed_key = derive_idempotency_key(log.transaction_hash, log.log_index)
                    raise self._abort(
                        f"Backfill could not apply {spec.event_type} {failed_key}: {error}",
                        tally,
                        failed_key,
                        error,
                    ) from error
                tally.record(outcome, log.position)

    def _abort(
        self,
        message: str,
        tally: _BackfillTally,
        failed_key: str | None,
        error: LedgerSyncError,
    ) -> BackfillError:
        _LOGGER.error(
            "backfill_aborted",
            failed_key=failed_key,
            last_block=tally.last_position.block_number if tally.last_position else None,
            last_log_index=tally.last_position.log_index if tally.last_position else None,
            error=str(error),
        )
        return BackfillError(
            f"{message} Rerun the same range once the cause is fixed; "
            "already applied events are skipped as duplicates.",
            last_position=tally.last_position,
            failed_key=failed_key,
        )


def _build_report(
    from_block: int,
    to_block: int,
    tally: _BackfillTally,
    cursor_block: int | None,
) -> BackfillReport:
    return BackfillReport(
        from_block=from_block,
        to_block=to_block,
        applied_count=tally.applied,
        duplicate_count=tally.duplicates,
        skipped_count=tally.skipped,
        cursor_block=cursor_block,
    )
