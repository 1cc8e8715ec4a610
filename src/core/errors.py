"""Ledger sync exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.types import LedgerPosition


class LedgerSyncError(Exception):
    """Base exception for all ledger sync failures."""


class LedgerSyncConfigError(LedgerSyncError):
    """Raised for invalid runtime configuration."""


class LedgerSyncDependencyError(LedgerSyncError):
    """Raised when an optional runtime dependency is missing."""


class DecodeError(LedgerSyncError):
    """Raised when a raw ledger log cannot be decoded into a domain event."""


class ProjectionWriteError(LedgerSyncError):
    """Raised when the document store rejects a projection mutation."""


class LedgerQueryError(LedgerSyncError):
    """Raised for ledger network and RPC failures."""


class SubscriptionError(LedgerSyncError):
    """Raised when a live ledger subscription drops or cannot be opened."""


class BackfillError(LedgerSyncError):
    """Raised when a backfill pass aborts before reaching its end block.

    Attributes:
        last_position: Last successfully applied ledger position, if any.
        failed_key: Idempotency key of the event that failed, if known.
    """

    def __init__(
        self,
        message: str,
        last_position: LedgerPosition | None = None,
        failed_key: str | None = None,
    ) -> None:
        super().__init__(message)
        self.last_position = last_position
        self.failed_key = failed_key
