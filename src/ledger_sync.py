"""Public SDK surface for ledger sync.

This module provides a stable import path for hosting services.
It re-exports the orchestrator, stores and typed result models.
"""

from __future__ import annotations

from core.config import LedgerSyncConfig
from core.errors import (
    BackfillError,
    DecodeError,
    LedgerQueryError,
    LedgerSyncConfigError,
    LedgerSyncError,
    ProjectionWriteError,
    SubscriptionError,
)
from core.types import ApplyOutcome, BackfillReport, LedgerLog, LedgerPosition, SyncHealth
from ledger.client import Web3LedgerClient
from ledger.decoder import decode_log
from projection.idempotency import derive_idempotency_key
from projection.memory_store import InMemoryDocumentStore
from projection.mongo_store import MongoDocumentStore
from sync.orchestrator import SyncOrchestrator

__all__ = [
    "ApplyOutcome",
    "BackfillError",
    "BackfillReport",
    "DecodeError",
    "InMemoryDocumentStore",
    "LedgerLog",
    "LedgerPosition",
    "LedgerQueryError",
    "LedgerSyncConfig",
    "LedgerSyncConfigError",
    "LedgerSyncError",
    "MongoDocumentStore",
    "ProjectionWriteError",
    "SubscriptionError",
    "SyncHealth",
    "SyncOrchestrator",
    "Web3LedgerClient",
    "decode_log",
    "derive_idempotency_key",
]
