"""
Escrow ledger model.

EscrowEntry is an append-only record of a single fund movement tied to a
milestone. Derived balances (milestone escrow, released value, progress)
are always computed from these rows.

Sign convention:
    fund     positive  money enters escrow
    release  negative  money leaves escrow to the counterparty
    refund   negative  money leaves escrow back to the owner
    adjust   any sign  correction of an earlier entry

Usage:
    from agreements.ledger.models import EscrowEntry

    EscrowEntry.objects.filter(milestone=milestone).order_by("created_at", "position")
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin

from agreements.exceptions import ImmutableEntryError
from agreements.money import Money
from agreements.state_machines import EntryKind


class EscrowEntryQuerySet(models.QuerySet):
    """QuerySet that refuses bulk mutation of ledger rows."""

    def update(self, **kwargs):
        raise ImmutableEntryError(
            "Escrow entries cannot be updated; record an adjust entry instead",
        )

    def delete(self):
        raise ImmutableEntryError(
            "Escrow entries cannot be deleted; record an adjust entry instead",
        )

    def for_agreement(self, agreement_id) -> EscrowEntryQuerySet:
        return self.filter(agreement_id=agreement_id)

    def for_milestone(self, milestone_id) -> EscrowEntryQuerySet:
        return self.filter(milestone_id=milestone_id)

    def in_order(self) -> EscrowEntryQuerySet:
        return self.order_by("created_at", "position")


class EscrowEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    An immutable record of a single escrow fund movement.

    Fields:
        id: UUID primary key (from UUIDPrimaryKeyMixin)
        created_at: Timestamp when the entry was recorded
        agreement: Agreement whose escrow moved
        milestone: Milestone the movement belongs to
        kind: fund, release, refund or adjust
        amount_minor: Signed amount in the smallest currency unit
        currency: ISO 4217 currency code
        actor_id: User ID of the caller that caused the movement
        position: Per-agreement insertion counter, tie-breaker for ordering
        payload: Arbitrary JSON (adjust entries carry corrects_entry_id and reason)
        idempotency_key: Unique key per milestone and kind

    Constraints:
        - idempotency_key is unique
        - (agreement, position) is unique
        - fund entries are positive, release and refund entries negative

    Once saved, an entry refuses both save() and delete() with
    ImmutableEntryError.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this entry was recorded",
    )

    agreement = models.ForeignKey(
        "agreements.Agreement",
        on_delete=models.PROTECT,
        related_name="escrow_entries",
        help_text="Agreement whose escrow moved",
    )
    milestone = models.ForeignKey(
        "agreements.Milestone",
        on_delete=models.PROTECT,
        related_name="escrow_entries",
        help_text="Milestone this movement belongs to",
    )

    kind = models.CharField(
        max_length=20,
        choices=EntryKind.choices,
        help_text="Category of this entry",
    )
    amount_minor = models.BigIntegerField(
        help_text="Signed amount in smallest currency unit",
    )
    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO 4217 currency code",
    )

    actor_id = models.CharField(
        max_length=128,
        help_text="User ID of the caller that caused this movement",
    )
    position = models.PositiveIntegerField(
        help_text="Per-agreement insertion counter",
    )
    payload = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON data (adjust reason, corrected entry)",
    )
    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique key to prevent duplicate entries",
    )

    objects = EscrowEntryQuerySet.as_manager()

    class Meta:
        ordering = ["created_at", "position"]
        verbose_name = "Escrow entry"
        verbose_name_plural = "Escrow entries"
        indexes = [
            models.Index(fields=["milestone", "kind"], name="escrow_milestone_kind_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["agreement", "position"],
                name="unique_escrow_entry_position",
            ),
            models.CheckConstraint(
                condition=(
                    ~Q(kind=EntryKind.FUND) | Q(amount_minor__gt=0)
                ),
                name="escrow_fund_entry_positive",
            ),
            models.CheckConstraint(
                condition=(
                    ~Q(kind__in=[EntryKind.RELEASE, EntryKind.REFUND])
                    | Q(amount_minor__lt=0)
                ),
                name="escrow_outflow_entry_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_kind_display()}: {self.amount}"

    @property
    def amount(self) -> Money:
        return Money(self.amount_minor, self.currency)

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableEntryError(
                f"Escrow entry {self.pk} cannot be modified",
                details={"entry_id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableEntryError(
            f"Escrow entry {self.pk} cannot be deleted",
            details={"entry_id": str(self.pk)},
        )
