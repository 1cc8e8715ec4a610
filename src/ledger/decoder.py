"""Raw ledger log decoding.

This module turns raw ledger logs into typed domain events.
It is pure: unknown or malformed logs raise DecodeError and nothing else.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from core.errors import DecodeError
from core.types import DomainEvent, LedgerLog
from ledger.event_registry import EventParam, EventSpec, build_topic_index

_FIELD_NAMES = {
    "eventId": "event_id",
    "targetFunding": "target_funding",
}

_DEFAULT_TOPIC_INDEX = build_topic_index()


def decode_log(
    log: LedgerLog,
    topic_index: Mapping[str, EventSpec] = _DEFAULT_TOPIC_INDEX,
) -> DomainEvent:
    """Decode one raw log into a domain event.

    Args:
        log: Raw ledger log.
        topic_index: Event specs keyed by lower-case topic hash.

    Returns:
        Typed domain event.

    Raises:
        DecodeError: If the signature is unknown or a field fails to parse.
    """
    if not log.topics:
        raise DecodeError(
            f"Cannot decode log {log.transaction_hash}:{log.log_index}: no topics. "
            "Anonymous events are not tracked."
        )
    spec = topic_index.get(_normalize_hex(log.topics[0]))
    if spec is None:
        raise DecodeError(
            f"Cannot decode log {log.transaction_hash}:{log.log_index}: "
            f"unrecognized signature {log.topics[0]}."
        )
    raw_args = _decode_raw_args(log, spec)
    fields = {_FIELD_NAMES.get(name, name): value for name, value in raw_args.items()}
    try:
        return spec.event_class(
            block_number=log.block_number,
            log_index=log.log_index,
            transaction_hash=log.transaction_hash,
            emitted_at=datetime.fromtimestamp(log.block_timestamp, tz=timezone.utc),
            **fields,
        )
    except (TypeError, ValueError, OverflowError, OSError) as error:
        raise DecodeError(
            f"Cannot decode log {log.transaction_hash}:{log.log_index} "
            f"as {spec.event_type}: {error}."
        ) from error


def _decode_raw_args(log: LedgerLog, spec: EventSpec) -> dict[str, Any]:
    """Decode indexed topics and data payload into named arguments."""
    indexed_params = spec.indexed_params
    if len(log.topics) != len(indexed_params) + 1:
        raise DecodeError(
            f"Cannot decode log {log.transaction_hash}:{log.log_index} as {spec.event_type}: "
            f"expected {len(indexed_params) + 1} topics, got {len(log.topics)}."
        )
    raw_args: dict[str, Any] = {}
    try:
        for param, topic in zip(indexed_params, log.topics[1:]):
            (value,) = abi_decode([param.abi_type], _hex_to_bytes(topic))
            raw_args[param.name] = _convert(param, value)
        data_params = spec.data_params
        values = abi_decode([param.abi_type for param in data_params], _hex_to_bytes(log.data))
        for param, value in zip(data_params, values):
            raw_args[param.name] = _convert(param, value)
    except (DecodingError, ValueError, TypeError) as error:
        raise DecodeError(
            f"Cannot decode log {log.transaction_hash}:{log.log_index} as {spec.event_type}: "
            f"{error}."
        ) from error
    return raw_args


def _convert(param: EventParam, value: Any) -> Any:
    """Convert one ABI value into its domain representation."""
    if param.abi_type == "address":
        return to_checksum_address(value)
    if param.abi_type == "bytes32":
        return decode_bytes32_text(value)
    if param.name == "eventId":
        return str(value)
    return value


def decode_bytes32_text(value: bytes) -> str:
    """Decode a NUL-padded bytes32 label into text.

    Raises:
        DecodeError: If the label is not valid UTF-8.
    """
    try:
        return value.rstrip(b"\x00").decode("utf-8")
    except UnicodeDecodeError as error:
        raise DecodeError(f"Invalid bytes32 text label {value.hex()}: {error.reason}.") from error


def _hex_to_bytes(value: str) -> bytes:
    stripped = value[2:] if value.startswith(("0x", "0X")) else value
    return bytes.fromhex(stripped)


def _normalize_hex(value: str) -> str:
    lowered = value.lower()
    return lowered if lowered.startswith("0x") else f"0x{lowered}"
