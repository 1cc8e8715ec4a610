"""Read-only ledger client.

This module defines the ledger contract consumed by the sync layers
and a web3 implementation backed by a JSON-RPC node.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Protocol

from core.config import LedgerSyncConfig
from core.errors import (
    LedgerQueryError,
    LedgerSyncDependencyError,
    LedgerSyncError,
    SubscriptionError,
)
from core.logging_config import get_logger
from core.retry import RetryPolicy, call_with_retry
from core.types import LedgerLog
from ledger.event_registry import MANAGER_CONTRACT, STABLECOIN_CONTRACT, EventSpec

_LOGGER = get_logger(__name__)

LogCallback = Callable[[LedgerLog], None]
ErrorCallback = Callable[[SubscriptionError], None]


class SubscriptionHandle(Protocol):
    """Handle to one open live subscription."""

    @property
    def active(self) -> bool: ...

    def cancel(self, timeout: float | None = None) -> None: ...


class LedgerClient(Protocol):
    """Ledger operations required by backfill and live sync."""

    def block_number(self) -> int: ...

    def query_events(self, spec: EventSpec, from_block: int, to_block: int) -> list[LedgerLog]: ...

    def subscribe(
        self,
        spec: EventSpec,
        callback: LogCallback,
        on_error: ErrorCallback,
        from_block: int | None = None,
    ) -> SubscriptionHandle: ...

    def unsubscribe_all(self) -> None: ...


class PollingSubscription:
    """Live subscription that polls the ledger on a background thread.

    Each poll queries logs between the last seen block and the head.
    A failed poll or delivery reports ``SubscriptionError`` and ends the
    thread; the owner decides whether to resubscribe.
    """

    def __init__(
        self,
        client: "Web3LedgerClient",
        spec: EventSpec,
        callback: LogCallback,
        on_error: ErrorCallback,
        next_block: int,
        poll_interval: float,
    ) -> None:
        self._client = client
        self._spec = spec
        self._callback = callback
        self._on_error = on_error
        self._next_block = next_block
        self._poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"ledger-subscription-{spec.event_type}",
            daemon=True,
        )

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        self._thread.start()

    def cancel(self, timeout: float | None = None) -> None:
        """Stop polling and wait for the current delivery to finish."""
        self._stop_event.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._poll_once()
            except LedgerSyncError as error:
                self._drop(error)
                return
            except Exception as error:
                _LOGGER.error(
                    "subscription_poll_crashed",
                    event_type=self._spec.event_type,
                    error=str(error),
                    exc_info=True,
                )
                self._drop(error)
                return
            self._stop_event.wait(self._poll_interval)

    def _drop(self, error: Exception) -> None:
        self._stop_event.set()
        self._on_error(
            SubscriptionError(
                f"Live feed for {self._spec.event_type} dropped: {error} "
                "Resubscribe or run a backfill over the missed range."
            )
        )

    def _poll_once(self) -> None:
        head = self._client.block_number()
        if head < self._next_block:
            return
        logs = self._client.query_events(self._spec, self._next_block, head)
        for log in logs:
            if self._stop_event.is_set():
                return
            self._callback(log)
        self._next_block = head + 1


class Web3LedgerClient:
    """Ledger client backed by a web3 HTTP provider."""

    def __init__(self, config: LedgerSyncConfig, web3: Any | None = None) -> None:
        """Connect to the configured ledger node.

        Args:
            config: Runtime configuration with provider URL and contract addresses.
            web3: Optional prebuilt ``Web3`` instance.

        Raises:
            LedgerSyncConfigError: If provider URL or addresses are missing.
            LedgerSyncDependencyError: If web3 is not installed.
        """
        config.validate_for_ledger()
        self._config = config
        self._retry_policy = RetryPolicy.from_config(config)
        self._web3 = web3 if web3 is not None else _create_web3(config)
        self._addresses = {
            MANAGER_CONTRACT: self._web3.to_checksum_address(config.manager_address),
            STABLECOIN_CONTRACT: self._web3.to_checksum_address(config.stablecoin_address),
        }
        self._timestamps: dict[int, int] = {}
        self._timestamps_lock = threading.Lock()
        self._subscriptions: list[PollingSubscription] = []
        self._subscriptions_lock = threading.Lock()

    def block_number(self) -> int:
        """Return the current ledger head block number."""
        return self._with_retry(lambda: int(self._web3.eth.block_number), "block_number")

    def query_events(self, spec: EventSpec, from_block: int, to_block: int) -> list[LedgerLog]:
        """Query logs of one event type over a closed block range.

        Args:
            spec: Event type to query.
            from_block: First block, inclusive.
            to_block: Last block, inclusive.

        Returns:
            Logs ordered by block number and log index.

        Raises:
            LedgerQueryError: If the query keeps failing after retries.
        """
        log_filter = {
            "address": self._addresses[spec.contract],
            "topics": [spec.topic],
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        raw_logs = self._with_retry(
            lambda: self._web3.eth.get_logs(log_filter),
            f"get_logs:{spec.event_type}",
        )
        logs = [self._to_ledger_log(raw_log) for raw_log in raw_logs]
        return sorted(logs, key=lambda log: log.position)

    def subscribe(
        self,
        spec: EventSpec,
        callback: LogCallback,
        on_error: ErrorCallback,
        from_block: int | None = None,
    ) -> PollingSubscription:
        """Open a live subscription for one event type.

        Args:
            spec: Event type to follow.
            callback: Called for every new log, in ledger order.
            on_error: Called once if the feed drops.
            from_block: First block to deliver; defaults to the block after head.

        Returns:
            Started subscription handle.
        """
        next_block = from_block if from_block is not None else self.block_number() + 1
        subscription = PollingSubscription(
            self, spec, callback, on_error, next_block, self._config.poll_interval
        )
        with self._subscriptions_lock:
            self._subscriptions = [handle for handle in self._subscriptions if handle.active]
            self._subscriptions.append(subscription)
        subscription.start()
        _LOGGER.info("subscription_opened", event_type=spec.event_type, from_block=next_block)
        return subscription

    @property
    def subscriptions(self) -> tuple[PollingSubscription, ...]:
        """Subscriptions registered since the last prune."""
        with self._subscriptions_lock:
            return tuple(self._subscriptions)

    def unsubscribe_all(self) -> None:
        """Cancel every open subscription and wait for in-flight deliveries."""
        with self._subscriptions_lock:
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.cancel(timeout=self._config.request_timeout)
        _LOGGER.info("subscriptions_closed", count=len(subscriptions))

    def _to_ledger_log(self, raw_log: Any) -> LedgerLog:
        block_number = int(raw_log["blockNumber"])
        block_timestamp = raw_log.get("blockTimestamp")
        if block_timestamp is None:
            block_timestamp = self._block_timestamp(block_number)
        return LedgerLog(
            block_number=block_number,
            log_index=int(raw_log["logIndex"]),
            transaction_hash=_to_hex(raw_log["transactionHash"]),
            block_timestamp=_to_int(block_timestamp),
            topics=tuple(_to_hex(topic) for topic in raw_log["topics"]),
            data=_to_hex(raw_log["data"]),
            address=str(raw_log.get("address", "")),
        )

    def _block_timestamp(self, block_number: int) -> int:
        with self._timestamps_lock:
            cached = self._timestamps.get(block_number)
        if cached is not None:
            return cached
        block = self._with_retry(
            lambda: self._web3.eth.get_block(block_number), f"get_block:{block_number}"
        )
        timestamp = int(block["timestamp"])
        with self._timestamps_lock:
            self._timestamps[block_number] = timestamp
        return timestamp

    def _with_retry(self, operation: Callable[[], Any], description: str) -> Any:
        def _guarded() -> Any:
            try:
                return operation()
            except Exception as error:
                raise LedgerQueryError(
                    f"Ledger request {description} failed: {error}. "
                    "Check the provider URL and node health."
                ) from error

        return call_with_retry(_guarded, self._retry_policy, (LedgerQueryError,), description)


def _create_web3(config: LedgerSyncConfig) -> Any:
    """Create a web3 client with a bounded request timeout.

    Raises:
        LedgerSyncDependencyError: If web3 is missing.
    """
    try:
        from web3 import Web3
    except ImportError as error:
        raise LedgerSyncDependencyError(
            "Ledger access requires web3, but it is not installed. "
            "Install web3 to sync from a JSON-RPC node."
        ) from error
    provider = Web3.HTTPProvider(
        config.provider_url, request_kwargs={"timeout": config.request_timeout}
    )
    return Web3(provider)


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else f"0x{text}"


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)
