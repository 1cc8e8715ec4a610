"""Projection mutations for decoded ledger events.

This module applies exactly one event's effect to the document store.
Every handler is idempotent per (transaction hash, log index), so replays
from overlapping backfill and live streams leave the projection unchanged.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

from core.constants import (
    ACTIVE_STATUS,
    COMPLETED_STATUS,
    DISASTERS_COLLECTION,
    DONATION_CURRENCY,
    DONATIONS_COLLECTION,
    SYSTEM_ACTOR,
    TRANSACTIONS_COLLECTION,
    USERS_COLLECTION,
    VENDORS_COLLECTION,
)
from core.errors import LedgerSyncConfigError, ProjectionWriteError
from core.logging_config import get_logger
from core.retry import RetryPolicy, call_with_retry
from core.types import (
    ApplyOutcome,
    BeneficiaryWhitelisted,
    CategorySpent,
    DomainEvent,
    EmergencyEventCreated,
    FundsDistributed,
    FundsDonated,
    FundsSpent,
    VendorWhitelisted,
)
from ledger.event_registry import KNOWN_EVENT_SPECS
from projection.document_store import DocumentStore
from projection.idempotency import event_key

_LOGGER = get_logger(__name__)

_Handler = Callable[["ProjectionMutator", Any, str], ApplyOutcome]


class ProjectionMutator:
    """Applies domain events to projection documents."""

    def __init__(
        self,
        store: DocumentStore,
        retry_policy: RetryPolicy,
        manager_address: str | None = None,
    ) -> None:
        """Create a mutator.

        Args:
            store: Projection document store.
            retry_policy: Backoff settings for rejected writes.
            manager_address: Manager contract address used as distribution source.

        Raises:
            LedgerSyncConfigError: If a known event type has no handler.
        """
        self._store = store
        self._retry_policy = retry_policy
        self._manager_address = manager_address or "manager"
        missing = sorted(
            spec.event_type for spec in KNOWN_EVENT_SPECS if spec.event_class not in _HANDLERS
        )
        if missing:
            raise LedgerSyncConfigError(
                f"No projection handler registered for: {', '.join(missing)}. "
                "Register a handler for every tracked event type."
            )

    def apply(self, event: DomainEvent) -> ApplyOutcome:
        """Apply one event, retrying rejected writes with backoff.

        Args:
            event: Decoded domain event.

        Returns:
            Whether the event changed the projection or was already present.

        Raises:
            ProjectionWriteError: If the store keeps rejecting the write.
        """
        key = event_key(event)
        handler = _HANDLERS[type(event)]
        outcome = call_with_retry(
            lambda: handler(self, event, key),
            self._retry_policy,
            (ProjectionWriteError,),
            f"apply:{event.event_type}:{key}",
        )
        _LOGGER.debug(
            "event_applied",
            event_type=event.event_type,
            key=key,
            block_number=event.block_number,
            outcome=outcome.value,
        )
        return outcome

    def _apply_emergency_event_created(
        self, event: EmergencyEventCreated, key: str
    ) -> ApplyOutcome:
        self._store.set(
            DISASTERS_COLLECTION,
            event.event_id,
            {
                "id": event.event_id,
                "name": event.name,
                "targetFunding": event.target_funding,
                "updatedAt": event.emitted_at,
            },
            merge=True,
            defaults={
                "status": ACTIVE_STATUS,
                "currentFunding": 0,
                "createdAt": event.emitted_at,
                "metadata": {
                    "stats": {
                        "beneficiariesCount": 0,
                        "fundsDistributed": 0,
                        "vendorsActive": 0,
                    }
                },
            },
        )
        return ApplyOutcome.APPLIED

    def _apply_funds_distributed(self, event: FundsDistributed, key: str) -> ApplyOutcome:
        created = self._store.create(
            TRANSACTIONS_COLLECTION,
            key,
            _transaction_record(
                event,
                key,
                record_type="distribution",
                source={"type": "contract", "id": self._manager_address},
                target={"type": "beneficiary", "id": event.beneficiary},
                amount=event.amount,
                description="Fund distribution to beneficiary",
                extra={"eventId": event.event_id},
            ),
        )
        incremented = self._store.atomic_increment(
            DISASTERS_COLLECTION,
            event.event_id,
            {"currentFunding": event.amount, "metadata.stats.fundsDistributed": event.amount},
            guard_key=key,
            defaults={"id": event.event_id, "createdAt": event.emitted_at},
        )
        if incremented and not created:
            _LOGGER.warning(
                "funding_increment_recovered",
                key=key,
                event_id=event.event_id,
                amount=str(event.amount),
            )
        return ApplyOutcome.APPLIED if created or incremented else ApplyOutcome.DUPLICATE

    def _apply_funds_spent(self, event: FundsSpent, key: str) -> ApplyOutcome:
        created = self._store.create(
            TRANSACTIONS_COLLECTION,
            key,
            _transaction_record(
                event,
                key,
                record_type="spending",
                source={"type": "beneficiary", "id": event.beneficiary},
                target={"type": "vendor", "id": event.vendor},
                amount=event.amount,
                description="Vendor spending on behalf of beneficiary",
                extra={"category": event.category},
            ),
        )
        return ApplyOutcome.APPLIED if created else ApplyOutcome.DUPLICATE

    def _apply_category_spent(self, event: CategorySpent, key: str) -> ApplyOutcome:
        created = self._store.create(
            TRANSACTIONS_COLLECTION,
            key,
            _transaction_record(
                event,
                key,
                record_type="category_spending",
                source={"type": "beneficiary", "id": event.beneficiary},
                target={"type": "vendor", "id": event.vendor},
                amount=event.amount,
                description=f"Spending in {event.category} category",
                extra={"category": event.category},
            ),
        )
        return ApplyOutcome.APPLIED if created else ApplyOutcome.DUPLICATE

    def _apply_beneficiary_whitelisted(
        self, event: BeneficiaryWhitelisted, key: str
    ) -> ApplyOutcome:
        profile: dict[str, Any] = {"whitelisted": event.status}
        if event.event_id is not None:
            profile["eventId"] = event.event_id
        self._upsert_user(event.beneficiary, "beneficiary", event, profile)
        return ApplyOutcome.APPLIED

    def _apply_vendor_whitelisted(self, event: VendorWhitelisted, key: str) -> ApplyOutcome:
        self._store.set(
            VENDORS_COLLECTION,
            event.vendor,
            {
                "userId": event.vendor,
                "ethereumAddress": event.vendor,
                "whitelisted": event.status,
                "updatedAt": event.emitted_at,
            },
            merge=True,
            defaults={
                "businessName": f"Vendor {event.vendor[:8]}",
                "verificationStatus": "verified",
                "createdAt": event.emitted_at,
            },
        )
        self._upsert_user(event.vendor, "vendor", event, {"whitelisted": event.status})
        return ApplyOutcome.APPLIED

    def _apply_funds_donated(self, event: FundsDonated, key: str) -> ApplyOutcome:
        created = self._store.create(
            DONATIONS_COLLECTION,
            key,
            {
                "id": key,
                "donorId": event.donor,
                "ethereumAddress": event.donor,
                "token": event.token,
                "amount": event.amount,
                "currency": DONATION_CURRENCY,
                "status": COMPLETED_STATUS,
                "ethereumTxHash": event.transaction_hash,
                "blockNumber": event.block_number,
                "logIndex": event.log_index,
                "timestamp": event.emitted_at,
                "metadata": {"paymentMethod": DONATION_CURRENCY},
            },
        )
        return ApplyOutcome.APPLIED if created else ApplyOutcome.DUPLICATE

    def _upsert_user(
        self,
        address: str,
        role: str,
        event: DomainEvent,
        extra: Mapping[str, Any],
    ) -> None:
        self._store.set(
            USERS_COLLECTION,
            address,
            {
                "ethereumAddress": address,
                "role": role,
                "updatedAt": event.emitted_at,
                **extra,
            },
            merge=True,
            defaults={"uid": address, "isActive": True, "createdAt": event.emitted_at},
        )


_HANDLERS: dict[type[DomainEvent], _Handler] = {
    EmergencyEventCreated: ProjectionMutator._apply_emergency_event_created,
    FundsDistributed: ProjectionMutator._apply_funds_distributed,
    FundsSpent: ProjectionMutator._apply_funds_spent,
    CategorySpent: ProjectionMutator._apply_category_spent,
    BeneficiaryWhitelisted: ProjectionMutator._apply_beneficiary_whitelisted,
    VendorWhitelisted: ProjectionMutator._apply_vendor_whitelisted,
    FundsDonated: ProjectionMutator._apply_funds_donated,
}


def _transaction_record(
    event: DomainEvent,
    key: str,
    record_type: str,
    source: Mapping[str, str],
    target: Mapping[str, str],
    amount: int,
    description: str,
    extra: Mapping[str, Any],
) -> dict[str, Any]:
    """Build an immutable transaction record document."""
    return {
        "id": key,
        "type": record_type,
        "from": dict(source),
        "to": dict(target),
        "amount": amount,
        "description": description,
        "ethereumTxHash": event.transaction_hash,
        "blockNumber": event.block_number,
        "logIndex": event.log_index,
        "status": COMPLETED_STATUS,
        "timestamp": event.emitted_at,
        "createdBy": SYSTEM_ACTOR,
        **extra,
    }
