"""Relief contract event signatures.

This module maps ABI event signatures onto domain event classes.
The sync layers iterate tracked specs; the decoder resolves topics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from eth_utils import keccak

from core.types import (
    BeneficiaryWhitelisted,
    CategorySpent,
    DomainEvent,
    EmergencyEventCreated,
    FundsDistributed,
    FundsDonated,
    FundsSpent,
    VendorWhitelisted,
)

MANAGER_CONTRACT = "manager"
STABLECOIN_CONTRACT = "stablecoin"


@dataclass(frozen=True)
class EventParam:
    """One ABI event parameter."""

    name: str
    abi_type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventSpec:
    """ABI description of one tracked ledger event.

    Attributes:
        event_class: Domain event class produced by decoding.
        contract: Logical emitting contract (manager or stablecoin).
        params: Ordered ABI parameters.
    """

    event_class: type[DomainEvent]
    contract: str
    params: tuple[EventParam, ...]

    @property
    def event_type(self) -> str:
        return self.event_class.event_type

    @property
    def signature(self) -> str:
        arg_types = ",".join(param.abi_type for param in self.params)
        return f"{self.event_type}({arg_types})"

    @property
    def topic(self) -> str:
        return "0x" + keccak(text=self.signature).hex()

    @property
    def indexed_params(self) -> tuple[EventParam, ...]:
        return tuple(param for param in self.params if param.indexed)

    @property
    def data_params(self) -> tuple[EventParam, ...]:
        return tuple(param for param in self.params if not param.indexed)


TRACKED_EVENT_SPECS: tuple[EventSpec, ...] = (
    EventSpec(
        EmergencyEventCreated,
        MANAGER_CONTRACT,
        (
            EventParam("eventId", "uint256", indexed=True),
            EventParam("name", "string"),
            EventParam("targetFunding", "uint256"),
        ),
    ),
    EventSpec(
        FundsDistributed,
        MANAGER_CONTRACT,
        (
            EventParam("beneficiary", "address", indexed=True),
            EventParam("amount", "uint256"),
            EventParam("eventId", "uint256"),
        ),
    ),
    EventSpec(
        FundsSpent,
        MANAGER_CONTRACT,
        (
            EventParam("beneficiary", "address", indexed=True),
            EventParam("vendor", "address", indexed=True),
            EventParam("amount", "uint256"),
            EventParam("category", "bytes32"),
        ),
    ),
    EventSpec(
        BeneficiaryWhitelisted,
        MANAGER_CONTRACT,
        (
            EventParam("beneficiary", "address", indexed=True),
            EventParam("eventId", "uint256"),
            EventParam("status", "bool"),
        ),
    ),
    EventSpec(
        VendorWhitelisted,
        MANAGER_CONTRACT,
        (
            EventParam("vendor", "address", indexed=True),
            EventParam("status", "bool"),
        ),
    ),
    EventSpec(
        CategorySpent,
        STABLECOIN_CONTRACT,
        (
            EventParam("beneficiary", "address", indexed=True),
            EventParam("vendor", "address", indexed=True),
            EventParam("category", "bytes32", indexed=True),
            EventParam("amount", "uint256"),
        ),
    ),
    EventSpec(
        FundsDonated,
        STABLECOIN_CONTRACT,
        (
            EventParam("donor", "address", indexed=True),
            EventParam("token", "address", indexed=True),
            EventParam("amount", "uint256"),
        ),
    ),
)

# The stablecoin emits a whitelist event without an event id. Only the manager
# variant is followed; this one stays decodable for hosts that pass stablecoin
# logs to ``decode_log`` directly, and backfill and live sync never query it.
STABLECOIN_BENEFICIARY_WHITELISTED = EventSpec(
    BeneficiaryWhitelisted,
    STABLECOIN_CONTRACT,
    (
        EventParam("beneficiary", "address", indexed=True),
        EventParam("status", "bool"),
    ),
)

KNOWN_EVENT_SPECS: tuple[EventSpec, ...] = TRACKED_EVENT_SPECS + (
    STABLECOIN_BENEFICIARY_WHITELISTED,
)


def build_topic_index(specs: tuple[EventSpec, ...] = KNOWN_EVENT_SPECS) -> Mapping[str, EventSpec]:
    """Index event specs by lower-case topic hash."""
    return {spec.topic.lower(): spec for spec in specs}


def tracked_spec(event_type: str) -> EventSpec:
    """Return the tracked spec for an event type name.

    Raises:
        KeyError: If the event type is not tracked.
    """
    for spec in TRACKED_EVENT_SPECS:
        if spec.event_type == event_type:
            return spec
    raise KeyError(event_type)
