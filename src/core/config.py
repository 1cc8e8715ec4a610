"""Runtime configuration model for ledger sync.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONFIRMATION_DEPTH,
    DEFAULT_DATA_ROOT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MONGO_DATABASE,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_START_BLOCK,
)
from core.errors import LedgerSyncConfigError


@dataclass(frozen=True)
class LedgerSyncConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for sync cursor state.
        provider_url: JSON-RPC endpoint of the ledger node.
        manager_address: Relief manager contract address.
        stablecoin_address: Relief stablecoin contract address.
        mongo_uri: Optional MongoDB URI for the projection store.
        mongo_database: MongoDB database name for projections.
        start_block: First block considered when no cursor exists.
        batch_size: Number of blocks per backfill chunk.
        confirmation_depth: Blocks behind head treated as "latest".
        poll_interval: Seconds between live filter polls.
        request_timeout: Seconds before a ledger request times out.
        max_retries: Retry attempts for ledger queries and store writes.
        retry_base_delay: First backoff delay in seconds.
    """

    data_root: Path
    provider_url: str | None
    manager_address: str | None
    stablecoin_address: str | None
    mongo_uri: str | None
    mongo_database: str
    start_block: int = DEFAULT_START_BLOCK
    batch_size: int = DEFAULT_BATCH_SIZE
    confirmation_depth: int = DEFAULT_CONFIRMATION_DEPTH
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY_SECONDS

    @classmethod
    def from_env(cls) -> "LedgerSyncConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            LedgerSyncConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("LEDGER_SYNC_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            provider_url=os.getenv("LEDGER_SYNC_PROVIDER_URL"),
            manager_address=os.getenv("LEDGER_SYNC_MANAGER_ADDRESS"),
            stablecoin_address=os.getenv("LEDGER_SYNC_STABLECOIN_ADDRESS"),
            mongo_uri=os.getenv("LEDGER_SYNC_MONGO_URI"),
            mongo_database=os.getenv("LEDGER_SYNC_MONGO_DATABASE", DEFAULT_MONGO_DATABASE),
            start_block=_parse_int("LEDGER_SYNC_START_BLOCK", DEFAULT_START_BLOCK, minimum=0),
            batch_size=_parse_int("LEDGER_SYNC_BATCH_SIZE", DEFAULT_BATCH_SIZE, minimum=1),
            confirmation_depth=_parse_int(
                "LEDGER_SYNC_CONFIRMATION_DEPTH", DEFAULT_CONFIRMATION_DEPTH, minimum=0
            ),
            poll_interval=_parse_float(
                "LEDGER_SYNC_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS
            ),
            request_timeout=_parse_float(
                "LEDGER_SYNC_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            max_retries=_parse_int("LEDGER_SYNC_MAX_RETRIES", DEFAULT_MAX_RETRIES, minimum=0),
            retry_base_delay=_parse_float(
                "LEDGER_SYNC_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY_SECONDS
            ),
        )

    def validate_for_ledger(self) -> None:
        """Check that ledger connection settings are present.

        Raises:
            LedgerSyncConfigError: If provider URL or contract addresses are missing.
        """
        missing = [
            name
            for name, value in (
                ("LEDGER_SYNC_PROVIDER_URL", self.provider_url),
                ("LEDGER_SYNC_MANAGER_ADDRESS", self.manager_address),
                ("LEDGER_SYNC_STABLECOIN_ADDRESS", self.stablecoin_address),
            )
            if not value
        ]
        if missing:
            raise LedgerSyncConfigError(
                f"Ledger sync is not configured: missing {', '.join(missing)}. "
                "Set the provider URL and both contract addresses before initializing."
            )


def _parse_int(env_name: str, default: int, minimum: int) -> int:
    """Parse an integer environment value.

    Args:
        env_name: Environment variable name.
        default: Value used when the variable is unset.
        minimum: Smallest accepted value.

    Returns:
        Parsed integer.

    Raises:
        LedgerSyncConfigError: If value is not an integer or below minimum.
    """
    raw_value = os.getenv(env_name)
    if raw_value is None:
        return default
    try:
        value = int(raw_value)
    except ValueError as error:
        raise LedgerSyncConfigError(
            f"Invalid {env_name} value: expected integer, got '{raw_value}'. "
            f"Set {env_name} to a numeric value."
        ) from error
    if value < minimum:
        raise LedgerSyncConfigError(
            f"Invalid {env_name} value: expected >= {minimum}, got {value}. "
            f"Set {env_name} to a value of at least {minimum}."
        )
    return value


def _parse_float(env_name: str, default: float) -> float:
    """Parse a positive float environment value."""
    raw_value = os.getenv(env_name)
    if raw_value is None:
        return default
    try:
        value = float(raw_value)
    except ValueError as error:
        raise LedgerSyncConfigError(
            f"Invalid {env_name} value: expected number, got '{raw_value}'. "
            f"Set {env_name} to a numeric value in seconds."
        ) from error
    if value <= 0:
        raise LedgerSyncConfigError(
            f"Invalid {env_name} value: expected a positive number, got {value}. "
            f"Set {env_name} to a value greater than zero."
        )
    return value
