"""Core constants used across ledger sync modules.

This module centralizes collection names, defaults, and file names.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".ledger-sync")
CURSOR_DIR_NAME = "cursor"
CURSOR_STATE_FILE_NAME = "state.json"
DEFAULT_MONGO_DATABASE = "relief"
DEFAULT_START_BLOCK = 0
DEFAULT_BATCH_SIZE = 2000
DEFAULT_CONFIRMATION_DEPTH = 0
DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_BASE_DELAY_SECONDS = 0.5
MAX_RETRY_DELAY_SECONDS = 30.0
DEFAULT_MAX_RESUBSCRIBE_ATTEMPTS = 5
LATEST_BLOCK = "latest"

DISASTERS_COLLECTION = "disasters"
TRANSACTIONS_COLLECTION = "transactions"
USERS_COLLECTION = "users"
VENDORS_COLLECTION = "vendors"
DONATIONS_COLLECTION = "donations"

SYSTEM_ACTOR = "system"
COMPLETED_STATUS = "completed"
ACTIVE_STATUS = "active"
DONATION_CURRENCY = "ERC20"
FUNDING_GUARD_FIELD = "appliedFundingKeys"
