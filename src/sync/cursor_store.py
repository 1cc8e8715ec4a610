"""Sync cursor persistence.

This module stores the last fully processed block boundary on disk.
It enables resume behavior across process restarts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
import json
from pathlib import Path
import threading

from core.constants import CURSOR_DIR_NAME, CURSOR_STATE_FILE_NAME
from core.errors import LedgerSyncError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class SyncCursorState:
    """Persisted cursor metadata."""

    last_processed_block: int


class SyncCursorStore:
    """Filesystem-backed sync cursor store."""

    def __init__(self, data_root: Path) -> None:
        self._cursor_dir = data_root / CURSOR_DIR_NAME
        self._cursor_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def load(self) -> int | None:
        """Return the last processed block, or None before the first sync."""
        with self._lock:
            state = self._read_state()
        return state.last_processed_block if state is not None else None

    def advance(self, block_number: int) -> int:
        """Move the cursor forward to a fully processed block.

        The cursor never regresses: advancing to an older block keeps the
        stored value.

        Args:
            block_number: Last block whose events are all applied.

        Returns:
            Cursor block after the update.
        """
        with self._lock:
            state = self._read_state()
            if state is not None and state.last_processed_block >= block_number:
                return state.last_processed_block
            self._write_state(SyncCursorState(last_processed_block=block_number))
        _LOGGER.debug("sync_cursor_advanced", last_processed_block=block_number)
        return block_number

    def clear(self) -> None:
        """Remove the persisted cursor."""
        with self._lock:
            state_path = self._state_path()
            if state_path.exists():
                state_path.unlink()

    def _read_state(self) -> SyncCursorState | None:
        """Read cursor state file if present."""
        state_path = self._state_path()
        if not state_path.exists():
            return None
        try:
            payload = json.loads(state_path.read_text(encoding="utf-8"))
            block_number = payload["last_processed_block"]
            if isinstance(block_number, bool) or not isinstance(block_number, int):
                raise TypeError(f"expected integer block, got {block_number!r}")
            return SyncCursorState(last_processed_block=block_number)
        except (json.JSONDecodeError, KeyError, TypeError) as error:
            raise LedgerSyncError(
                f"Failed to read sync cursor at {state_path}: {error}. "
                "Delete the cursor file and rerun sync with an explicit --from-block."
            ) from error

    def _write_state(self, state: SyncCursorState) -> None:
        """Write cursor state file."""
        state_path = self._state_path()
        state_path.write_text(json.dumps(asdict(state), indent=2) + "\n", encoding="utf-8")

    def _state_path(self) -> Path:
        return self._cursor_dir / CURSOR_STATE_FILE_NAME
