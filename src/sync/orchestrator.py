"""Top-level sync controller.

This module wires the ledger client, projection store, backfill and live
managers behind one object whose lifecycle is owned by the hosting service.
"""

from __future__ import annotations

from core.config import LedgerSyncConfig
from core.constants import LATEST_BLOCK
from core.errors import BackfillError, LedgerSyncError
from core.logging_config import get_logger
from core.retry import RetryPolicy
from core.types import BackfillReport, BlockTag, SyncHealth
from ledger.client import LedgerClient, Web3LedgerClient
from projection.document_store import DocumentStore
from projection.mongo_store import MongoDocumentStore
from projection.mutator import ProjectionMutator
from sync.backfill import BackfillCoordinator
from sync.cursor_store import SyncCursorStore
from sync.event_pipeline import EventPipeline
from sync.live import ListenerState, LiveSubscriptionManager

_LOGGER = get_logger(__name__)


class SyncOrchestrator:
    """Owns one ledger-to-projection sync instance.

    Lifecycle: construct, ``initialize()``, use, ``shutdown()``. Backfill
    and live sync may overlap; idempotent application absorbs re-delivery.
    """

    def __init__(
        self,
        config: LedgerSyncConfig,
        store: DocumentStore | None = None,
        ledger_client: LedgerClient | None = None,
    ) -> None:
        """Create an uninitialized orchestrator.

        Args:
            config: Runtime configuration.
            store: Projection store; defaults to MongoDB from config.
            ledger_client: Ledger client; defaults to a web3 client from config.
        """
        self._config = config
        self._store = store
        self._owned_store: MongoDocumentStore | None = None
        self._ledger_client = ledger_client
        self._cursor_store = SyncCursorStore(config.data_root)
        self._backfill: BackfillCoordinator | None = None
        self._live: LiveSubscriptionManager | None = None
        self._last_error: str | None = None

    @property
    def initialized(self) -> bool:
        return self._backfill is not None

    def initialize(self) -> None:
        """Build ledger and store handles.

        Calling it again on an initialized orchestrator does nothing.

        Raises:
            LedgerSyncConfigError: If ledger or store settings are missing or invalid.
        """
        if self.initialized:
            return
        if self._ledger_client is None:
            self._ledger_client = Web3LedgerClient(self._config)
        if self._store is None:
            self._owned_store = MongoDocumentStore.from_config(self._config)
            self._store = self._owned_store
        retry_policy = RetryPolicy.from_config(self._config)
        pipeline = EventPipeline(
            ProjectionMutator(self._store, retry_policy, self._config.manager_address)
        )
        self._live = LiveSubscriptionManager(self._ledger_client, pipeline, retry_policy)
        self._backfill = BackfillCoordinator(
            self._ledger_client,
            pipeline,
            self._cursor_store,
            batch_size=self._config.batch_size,
            confirmation_depth=self._config.confirmation_depth,
            start_block=self._config.start_block,
        )
        _LOGGER.info(
            "sync_initialized",
            batch_size=self._config.batch_size,
            confirmation_depth=self._config.confirmation_depth,
        )

    def sync_range(self, from_block: int, to_block: BlockTag = LATEST_BLOCK) -> BackfillReport:
        """Backfill a closed block range.

        Args:
            from_block: First block, inclusive.
            to_block: Last block, inclusive, or ``"latest"``.

        Returns:
            Backfill report.

        Raises:
            LedgerSyncError: If called before ``initialize()``.
            BackfillError: If the pass aborts; rerunning the same range is safe.
        """
        backfill = self._require_backfill()
        try:
            report = backfill.run(from_block, to_block)
        except BackfillError as error:
            self._last_error = str(error)
            raise
        self._last_error = None
        return report

    def sync_from_cursor(self) -> BackfillReport:
        """Backfill from the block after the cursor up to ``"latest"``.

        Without a cursor the configured start block is used.
        """
        self._require_backfill()
        cursor_block = self._cursor_store.load()
        from_block = cursor_block + 1 if cursor_block is not None else self._config.start_block
        return self.sync_range(from_block, LATEST_BLOCK)

    def start_listening(self, from_block: int | None = None) -> None:
        """Open live subscriptions for every tracked event type.

        Args:
            from_block: First block to deliver; defaults to the block after the
                cursor, or the block after head when no cursor exists.

        Raises:
            LedgerSyncError: If called before ``initialize()``.
            SubscriptionError: If subscriptions cannot be opened.
        """
        live = self._require_live()
        if from_block is None:
            cursor_block = self._cursor_store.load()
            from_block = cursor_block + 1 if cursor_block is not None else None
        live.start(from_block)

    def stop_listening(self) -> None:
        """Stop live subscriptions; safe at any time."""
        if self._live is not None:
            self._live.stop()

    def shutdown(self) -> None:
        """Stop listening and release sync handles.

        A store built from config is closed; a store passed in stays open.
        """
        self.stop_listening()
        self._backfill = None
        self._live = None
        if self._owned_store is not None:
            self._owned_store.close()
            self._owned_store = None
            self._store = None
        _LOGGER.info("sync_shutdown")

    def health(self) -> SyncHealth:
        """Return the health probe payload.

        Available before ``initialize()``; a corrupt cursor reports degraded.
        """
        last_error = self._last_error
        try:
            last_processed_block = self._cursor_store.load()
        except LedgerSyncError as error:
            last_processed_block = None
            last_error = str(error)
        listening = self._live is not None and self._live.state is ListenerState.LISTENING
        live_degraded = self._live is not None and self._live.degraded
        if live_degraded and last_error is None and self._live is not None:
            last_error = self._live.last_error
        return SyncHealth(
            last_processed_block=last_processed_block,
            listening=listening,
            degraded=live_degraded or last_error is not None,
            last_error=last_error,
        )

    def _require_backfill(self) -> BackfillCoordinator:
        if self._backfill is None:
            raise LedgerSyncError(
                "Sync orchestrator is not initialized. Call initialize() before syncing."
            )
        return self._backfill

    def _require_live(self) -> LiveSubscriptionManager:
        if self._live is None:
            raise LedgerSyncError(
                "Sync orchestrator is not initialized. Call initialize() before listening."
            )
        return self._live
