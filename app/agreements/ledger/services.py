"""
Escrow ledger service layer.

This module provides the EscrowLedger class which encapsulates all ledger
reads and writes. All escrow entries should be written through this
service so idempotency, ordering and immutability are enforced in one
place.

Callers are expected to hold the agreement lock (see agreements.locks)
while recording entries; positions are assigned per agreement under it.

Usage:
    from agreements.ledger.services import EscrowLedger, escrow_ledger
    from agreements.ledger.types import RecordEntryParams

    entry = escrow_ledger.record_entry(RecordEntryParams(...))
    balance = escrow_ledger.balance_for(milestone.id)  # Money
    escrow_ledger.has_entry(milestone.id, EntryKind.RELEASE)
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Max, Sum, Value
from django.db.models.functions import Coalesce

from agreements.exceptions import InvalidAmount, NotFound
from agreements.money import Money
from agreements.state_machines import EntryKind

from .models import EscrowEntry, EscrowEntryQuerySet
from .types import RecordEntryParams

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class EscrowLedger:
    """
    Service class for escrow ledger operations.

    Key features:
    - Idempotency via unique keys (safe to retry)
    - Per-agreement insertion positions for stable ordering
    - Balances always derived by summing entries

    All methods are static - no instance state is maintained.
    """

    @staticmethod
    def record_entry(params: RecordEntryParams) -> EscrowEntry:
        """
        Append one entry to the ledger.

        Idempotent - safe to call multiple times with the same
        idempotency_key. If an entry with the same key already exists,
        that entry is returned unchanged.

        Args:
            params: Entry parameters including milestone, kind and signed amount

        Returns:
            The created or existing EscrowEntry
        """
        existing = EscrowEntry.objects.filter(
            idempotency_key=params.idempotency_key
        ).first()
        if existing is not None:
            logger.info(
                "Escrow entry already recorded",
                extra={
                    "idempotency_key": params.idempotency_key,
                    "entry_id": str(existing.id),
                },
            )
            return existing

        position = EscrowLedger._next_position(params.agreement_id)

        # Savepoint so a concurrent duplicate does not poison the outer transaction
        try:
            with transaction.atomic():
                entry = EscrowEntry.objects.create(
                    agreement_id=params.agreement_id,
                    milestone_id=params.milestone_id,
                    kind=params.kind,
                    amount_minor=params.amount_minor,
                    currency=params.currency.upper(),
                    actor_id=params.actor_id,
                    position=position,
                    payload=params.payload or {},
                    idempotency_key=params.idempotency_key,
                )
        except IntegrityError:
            entry = EscrowEntry.objects.get(idempotency_key=params.idempotency_key)
            return entry

        logger.info(
            "Escrow entry recorded",
            extra={
                "entry_id": str(entry.id),
                "agreement_id": str(params.agreement_id),
                "milestone_id": str(params.milestone_id),
                "kind": params.kind,
                "amount_minor": params.amount_minor,
                "currency": entry.currency,
                "position": position,
            },
        )
        return entry

    @staticmethod
    def _next_position(agreement_id: uuid.UUID) -> int:
        current = EscrowEntry.objects.filter(agreement_id=agreement_id).aggregate(
            top=Max("position")
        )["top"]
        return (current or 0) + 1

    @staticmethod
    def get_entry(entry_id: uuid.UUID) -> EscrowEntry:
        """
        Get entry by ID.

        Raises:
            NotFound: If the entry doesn't exist
        """
        try:
            return EscrowEntry.objects.get(id=entry_id)
        except (EscrowEntry.DoesNotExist, DjangoValidationError):
            raise NotFound(
                f"Escrow entry {entry_id} not found",
                details={"entry_id": str(entry_id)},
            )

    @staticmethod
    def entries_for(agreement_id: uuid.UUID) -> EscrowEntryQuerySet:
        """
        All entries of an agreement, ordered by timestamp then position.

        Returns a lazy QuerySet: iterating it again re-runs the query.
        """
        return EscrowEntry.objects.for_agreement(agreement_id).in_order()

    @staticmethod
    def entries_for_milestone(milestone_id: uuid.UUID) -> EscrowEntryQuerySet:
        return EscrowEntry.objects.for_milestone(milestone_id).in_order()

    @staticmethod
    def balance_for(milestone_id: uuid.UUID, currency: str | None = None) -> Money:
        """
        Signed sum of a milestone's entries.

        Args:
            milestone_id: UUID of the milestone
            currency: Currency to report when the milestone has no entries

        Returns:
            Money holding the escrow balance of the milestone
        """
        entries = EscrowEntry.objects.for_milestone(milestone_id)
        total = entries.aggregate(
            total=Coalesce(Sum("amount_minor"), Value(0))
        )["total"]
        if currency is None:
            first = entries.values_list("currency", flat=True).first()
            currency = first or settings.ESCROW_DEFAULT_CURRENCY
        return Money(int(total), currency)

    @staticmethod
    def balances_by_milestone(agreement_id: uuid.UUID) -> dict[uuid.UUID, int]:
        """Signed escrow balance (minor units) per milestone of an agreement."""
        rows = (
            EscrowEntry.objects.for_agreement(agreement_id)
            .order_by()
            .values("milestone_id")
            .annotate(total=Sum("amount_minor"))
        )
        return {row["milestone_id"]: int(row["total"]) for row in rows}

    @staticmethod
    def totals_by_kind(
        agreement_id: uuid.UUID,
        milestone_ids: Iterable[uuid.UUID] | None = None,
    ) -> dict[str, int]:
        """
        Signed sums per entry kind for an agreement.

        Every kind is present in the result, zero when there are no entries.
        """
        entries = EscrowEntry.objects.for_agreement(agreement_id)
        if milestone_ids is not None:
            entries = entries.filter(milestone_id__in=list(milestone_ids))
        rows = entries.order_by().values("kind").annotate(total=Sum("amount_minor"))
        totals = {kind.value: 0 for kind in EntryKind}
        for row in rows:
            totals[row["kind"]] = int(row["total"])
        return totals

    @staticmethod
    def has_entry(milestone_id: uuid.UUID, kind: str) -> bool:
        """Whether the milestone already has an entry of this kind."""
        return EscrowEntry.objects.filter(milestone_id=milestone_id, kind=kind).exists()

    @staticmethod
    def adjust(
        entry_id: uuid.UUID,
        amount: Money,
        actor_id: str,
        reason: str = "",
    ) -> EscrowEntry:
        """
        Record a correction of an earlier entry.

        The original entry is left untouched; a new ``adjust`` entry on the
        same milestone carries the signed correction amount.

        Args:
            entry_id: UUID of the entry being corrected
            amount: Signed correction amount (same currency as the entry)
            actor_id: User ID recording the correction
            reason: Free-text reason stored in the payload

        Returns:
            The new adjust entry

        Raises:
            NotFound: If the entry doesn't exist
            CurrencyMismatch: If the amount's currency differs from the entry's
            InvalidAmount: If the amount is zero
        """
        original = EscrowLedger.get_entry(entry_id)
        # Raises CurrencyMismatch for a different currency
        original.amount.compare(amount)
        if amount.is_zero():
            raise InvalidAmount(
                "Adjustment amount must be non-zero",
                details={"entry_id": str(entry_id)},
            )

        return EscrowLedger.record_entry(
            RecordEntryParams(
                agreement_id=original.agreement_id,
                milestone_id=original.milestone_id,
                kind=EntryKind.ADJUST,
                amount_minor=amount.amount_minor,
                currency=amount.currency,
                actor_id=actor_id,
                idempotency_key=f"{EntryKind.ADJUST.value}:{uuid.uuid4()}",
                payload={"corrects_entry_id": str(original.id), "reason": reason},
            )
        )


# Singleton instance for convenience
# Usage: from agreements.ledger.services import escrow_ledger
escrow_ledger = EscrowLedger()
