"""Live subscription management.

This module keeps one ledger subscription open per tracked event type
and feeds delivered logs through the same decode-and-apply pipeline as backfill.
"""

from __future__ import annotations

from enum import Enum
from functools import partial
import threading

from core.constants import DEFAULT_MAX_RESUBSCRIBE_ATTEMPTS
from core.errors import LedgerQueryError, SubscriptionError
from core.logging_config import get_logger
from core.retry import RetryPolicy
from core.types import LedgerLog
from ledger.client import LedgerClient
from ledger.event_registry import TRACKED_EVENT_SPECS, EventSpec
from projection.idempotency import derive_idempotency_key
from sync.event_pipeline import EventPipeline

_LOGGER = get_logger(__name__)


class ListenerState(str, Enum):
    """Live manager lifecycle states."""

    STOPPED = "stopped"
    LISTENING = "listening"


class LiveSubscriptionManager:
    """Owns live subscriptions for every tracked event type.

    Deliveries for one event type arrive in ledger order; no ordering holds
    across types. A dropped feed is reopened from the block of the last
    delivered log, so replays are absorbed by idempotent application.
    """

    def __init__(
        self,
        ledger_client: LedgerClient,
        pipeline: EventPipeline,
        retry_policy: RetryPolicy,
        max_resubscribe_attempts: int = DEFAULT_MAX_RESUBSCRIBE_ATTEMPTS,
        specs: tuple[EventSpec, ...] = TRACKED_EVENT_SPECS,
    ) -> None:
        self._ledger_client = ledger_client
        self._pipeline = pipeline
        self._retry_policy = retry_policy
        self._max_resubscribe_attempts = max_resubscribe_attempts
        self._specs = specs
        self._state = ListenerState.STOPPED
        self._state_lock = threading.RLock()
        self._apply_lock = threading.Lock()
        self._stopped = threading.Event()
        self._resume_blocks: dict[str, int] = {}
        self._apply_failures: dict[str, int] = {}
        self._degraded = False
        self._last_error: str | None = None

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def start(self, from_block: int | None = None) -> None:
        """Open one subscription per tracked event type.

        Args:
            from_block: First block to deliver; defaults to the block after head.

        Raises:
            SubscriptionError: If any subscription cannot be opened.
        """
        with self._state_lock:
            if self._state is ListenerState.LISTENING:
                _LOGGER.info("live_sync_already_listening")
                return
            try:
                start_block = (
                    from_block
                    if from_block is not None
                    else self._ledger_client.block_number() + 1
                )
            except LedgerQueryError as error:
                raise SubscriptionError(
                    f"Cannot start live sync: {error} Retry once the ledger node is reachable."
                ) from error
            self._stopped.clear()
            self._state = ListenerState.LISTENING
            self._degraded = False
            self._last_error = None
            try:
                for spec in self._specs:
                    self._resume_blocks[spec.event_type] = start_block
                    self._apply_failures[spec.event_type] = 0
                    self._open(spec)
            except LedgerQueryError as error:
                self._state = ListenerState.STOPPED
                self._stopped.set()
                self._ledger_client.unsubscribe_all()
                raise SubscriptionError(
                    f"Cannot start live sync: {error} Retry once the ledger node is reachable."
                ) from error
        _LOGGER.info("live_sync_started", from_block=start_block, event_types=len(self._specs))

    def stop(self) -> None:
        """Cancel subscriptions and wait for in-flight mutations to finish.

        Safe to call at any time, including when already stopped.
        """
        with self._state_lock:
            if self._state is ListenerState.STOPPED:
                return
            self._state = ListenerState.STOPPED
            self._stopped.set()
        self._ledger_client.unsubscribe_all()
        with self._apply_lock:
            pass
        _LOGGER.info("live_sync_stopped")

    def _open(self, spec: EventSpec) -> None:
        """Open a subscription for one event type from its resume block."""
        self._ledger_client.subscribe(
            spec,
            partial(self._deliver, spec),
            partial(self._on_drop, spec),
            from_block=self._resume_blocks[spec.event_type],
        )

    def _deliver(self, spec: EventSpec, log: LedgerLog) -> None:
        with self._apply_lock:
            if self._stopped.is_set():
                return
            try:
                self._pipeline.process(log)
            except Exception as error:
                failed_key = derive_idempotency_key(log.transaction_hash, log.log_index)
                self._resume_blocks[spec.event_type] = log.block_number
                self._apply_failures[spec.event_type] += 1
                raise SubscriptionError(
                    f"Live apply of {spec.event_type} {failed_key} failed: {error}"
                ) from error
            self._resume_blocks[spec.event_type] = log.block_number
            self._apply_failures[spec.event_type] = 0

    def _on_drop(self, spec: EventSpec, error: SubscriptionError) -> None:
        """Reopen a dropped feed with backoff, marking degraded on exhaustion.

        Each drop gets its own reopen budget. Deliveries that keep failing
        share a separate budget, so a poisoned log cannot reopen the feed
        forever while transport drops on a quiet feed never add up.
        """
        _LOGGER.warning("subscription_dropped", event_type=spec.event_type, error=str(error))
        with self._apply_lock:
            apply_failures = self._apply_failures.get(spec.event_type, 0)
        if apply_failures > self._max_resubscribe_attempts:
            self._mark_degraded(spec, error, apply_failures)
            return
        attempt = 0
        while True:
            attempt += 1
            if attempt > self._max_resubscribe_attempts:
                self._mark_degraded(spec, error, attempt - 1)
                return
            if self._stopped.wait(self._retry_policy.delay_for(attempt)):
                return
            with self._state_lock:
                if self._state is ListenerState.STOPPED:
                    return
                try:
                    self._open(spec)
                except LedgerQueryError as reopen_error:
                    _LOGGER.warning(
                        "resubscribe_failed",
                        event_type=spec.event_type,
                        attempt=attempt,
                        error=str(reopen_error),
                    )
                    continue
            _LOGGER.info(
                "subscription_reopened",
                event_type=spec.event_type,
                attempt=attempt,
                from_block=self._resume_blocks[spec.event_type],
            )
            return

    def _mark_degraded(self, spec: EventSpec, error: SubscriptionError, attempts: int) -> None:
        self._degraded = True
        self._last_error = str(error)
        _LOGGER.error(
            "subscription_failed",
            event_type=spec.event_type,
            attempts=attempts,
            error=str(error),
        )
