"""Idempotency key derivation for ledger events."""

from __future__ import annotations

from core.types import DomainEvent


def derive_idempotency_key(transaction_hash: str, log_index: int) -> str:
    """Build the deterministic key for one ledger log.

    Args:
        transaction_hash: Transaction hash, with or without ``0x`` prefix.
        log_index: Log index inside the block.

    Returns:
        Key in ``0x<hash>:<log_index>`` form.

    Raises:
        ValueError: If the hash is empty or the index is negative.
    """
    normalized_hash = transaction_hash.strip()
    if normalized_hash[:2] in ("0x", "0X"):
        normalized_hash = normalized_hash[2:]
    if not normalized_hash:
        raise ValueError("Transaction hash must not be empty.")
    if log_index < 0:
        raise ValueError(f"Log index must be non-negative, got {log_index}.")
    return f"0x{normalized_hash}:{log_index}"


def event_key(event: DomainEvent) -> str:
    """Return the idempotency key of a decoded event."""
    return derive_idempotency_key(event.transaction_hash, event.log_index)
