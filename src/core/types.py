"""Shared typed models.

This module defines immutable data models used by the ledger, projection,
and sync layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar

BlockTag = int | str


@dataclass(frozen=True, order=True)
class LedgerPosition:
    """Ordered position of one log entry in the ledger.

    Attributes:
        block_number: Block height containing the log.
        log_index: Index of the log inside its block.
    """

    block_number: int
    log_index: int


@dataclass(frozen=True)
class LedgerLog:
    """Raw log entry as returned by the ledger client.

    Attributes:
        block_number: Block height containing the log.
        log_index: Index of the log inside its block.
        transaction_hash: ``0x``-prefixed transaction hash.
        block_timestamp: Block timestamp in unix seconds.
        topics: Hex-encoded topics; ``topics[0]`` is the event signature hash.
        data: Hex-encoded non-indexed ABI payload.
        address: Emitting contract address.
    """

    block_number: int
    log_index: int
    transaction_hash: str
    block_timestamp: int
    topics: tuple[str, ...]
    data: str
    address: str = ""

    @property
    def position(self) -> LedgerPosition:
        return LedgerPosition(self.block_number, self.log_index)


@dataclass(frozen=True)
class DomainEvent:
    """Decoded ledger event shared fields.

    Attributes:
        block_number: Block height containing the event.
        log_index: Index of the log inside its block.
        transaction_hash: Emitting transaction hash.
        emitted_at: UTC block timestamp.
    """

    event_type: ClassVar[str] = ""

    block_number: int
    log_index: int
    transaction_hash: str
    emitted_at: datetime

    @property
    def position(self) -> LedgerPosition:
        return LedgerPosition(self.block_number, self.log_index)


@dataclass(frozen=True)
class EmergencyEventCreated(DomainEvent):
    """A disaster relief event was registered on the manager contract."""

    event_type: ClassVar[str] = "EmergencyEventCreated"

    event_id: str
    name: str
    target_funding: int


@dataclass(frozen=True)
class FundsDistributed(DomainEvent):
    """Funds were distributed from the manager to a beneficiary."""

    event_type: ClassVar[str] = "FundsDistributed"

    beneficiary: str
    amount: int
    event_id: str


@dataclass(frozen=True)
class FundsSpent(DomainEvent):
    """A beneficiary spent funds at a vendor through the manager."""

    event_type: ClassVar[str] = "FundsSpent"

    beneficiary: str
    vendor: str
    amount: int
    category: str


@dataclass(frozen=True)
class CategorySpent(DomainEvent):
    """A beneficiary spent stablecoin in a limited category."""

    event_type: ClassVar[str] = "CategorySpent"

    beneficiary: str
    vendor: str
    category: str
    amount: int


@dataclass(frozen=True)
class BeneficiaryWhitelisted(DomainEvent):
    """A beneficiary whitelist flag changed.

    ``event_id`` is only emitted by the manager contract variant.
    """

    event_type: ClassVar[str] = "BeneficiaryWhitelisted"

    beneficiary: str
    status: bool
    event_id: str | None = None


@dataclass(frozen=True)
class VendorWhitelisted(DomainEvent):
    """A vendor whitelist flag changed."""

    event_type: ClassVar[str] = "VendorWhitelisted"

    vendor: str
    status: bool


@dataclass(frozen=True)
class FundsDonated(DomainEvent):
    """A donor deposited ERC20 funds into the stablecoin contract."""

    event_type: ClassVar[str] = "FundsDonated"

    donor: str
    token: str
    amount: int


class ApplyOutcome(str, Enum):
    """Result of applying one event to the projection store."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class BackfillReport:
    """Summary of one completed backfill pass.

    Attributes:
        from_block: First block of the processed range.
        to_block: Resolved last block of the processed range.
        applied_count: Events whose effect was written.
        duplicate_count: Events already present in the projection.
        skipped_count: Logs skipped because they could not be decoded.
        cursor_block: Sync cursor after the pass.
    """

    from_block: int
    to_block: int
    applied_count: int
    duplicate_count: int
    skipped_count: int
    cursor_block: int | None


@dataclass(frozen=True)
class SyncHealth:
    """Health probe payload for the hosting service.

    Attributes:
        last_processed_block: Persisted sync cursor block.
        listening: Whether live subscriptions are open.
        degraded: Whether a failure needs operator attention.
        last_error: Message of the most recent surfaced failure.
    """

    last_processed_block: int | None
    listening: bool
    degraded: bool = False
    last_error: str | None = None
