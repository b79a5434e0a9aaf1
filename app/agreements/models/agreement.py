"""
Agreement model for the milestone escrow lifecycle.

An Agreement is created in DRAFT by its owner, activated by an explicit
send, completed automatically once every milestone is released, and can
be cancelled from DRAFT or ACTIVE.

Usage:
    from agreements.models import Agreement
    from agreements.state_machines import AgreementState, AgreementType

    agreement = Agreement.objects.create(
        agreement_type=AgreementType.FREELANCE,
        title="Website build",
        owner_id="user-1",
        counterparty_id="user-2",
        total_value_minor=100000,
        currency="USD",
    )

    # State transitions using django-fsm
    agreement.send()  # draft -> active
    agreement.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from agreements.money import Money
from agreements.state_machines import AgreementState, AgreementType


class AgreementQuerySet(models.QuerySet):
    """QuerySet with party and state filters."""

    def for_party(self, user_id: str) -> AgreementQuerySet:
        """Agreements where the user is owner or counterparty."""
        return self.filter(
            models.Q(owner_id=user_id) | models.Q(counterparty_id=user_id)
        )

    def open(self) -> AgreementQuerySet:
        return self.filter(state__in=[AgreementState.DRAFT, AgreementState.ACTIVE])


class Agreement(UUIDPrimaryKeyMixin, BaseModel):
    """
    Multi-milestone agreement between an owner and a counterparty.

    Uses django-fsm for state machine management and a version field for
    optimistic concurrency checks. All money figures other than the total
    (released value, progress) are derived from the escrow ledger by
    agreements.aggregates and are never stored here.

    State Flow:
        DRAFT -> ACTIVE -> COMPLETED

    Cancellation Flow:
        DRAFT/ACTIVE -> CANCELLED

    Fields:
        agreement_type: Template type (freelance, loan, rent, ...)
        title/description: Display text
        owner_id: Identity provider user ID of the creator (funds escrow)
        counterparty_id: Identity provider user ID of the other party
        total_value_minor: Agreed total in minor units
        currency: ISO 4217 currency code (upper case)
        requires_sequential_release: Release milestones strictly in sequence
        manual_release: Approval does not release automatically
        state: Current FSM state
        version: Optimistic locking version
        *_at timestamps: Track state transition times
        metadata: Flexible JSON storage (terms, payment terms)
    """

    # ==========================================================================
    # Parties
    # ==========================================================================

    owner_id = models.CharField(
        max_length=128,
        db_index=True,
        help_text="User ID (from the identity provider) of the agreement owner",
    )

    counterparty_id = models.CharField(
        max_length=128,
        null=True,
        blank=True,
        db_index=True,
        help_text="User ID of the counterparty; must be resolved before sending",
    )

    # ==========================================================================
    # Details
    # ==========================================================================

    agreement_type = models.CharField(
        max_length=20,
        choices=AgreementType.choices,
        default=AgreementType.CUSTOM,
        help_text="Template type of the agreement",
    )

    title = models.CharField(
        max_length=200,
        help_text="Agreement title",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="Agreement description and terms summary",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    total_value_minor = models.PositiveBigIntegerField(
        help_text="Agreed total value in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO 4217 currency code (upper case)",
    )

    # ==========================================================================
    # Release Policy (template defaults, overridable per agreement)
    # ==========================================================================

    requires_sequential_release = models.BooleanField(
        default=False,
        help_text="Milestones must be released in sequence order",
    )

    manual_release = models.BooleanField(
        default=False,
        help_text="Approval does not release funds automatically",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    state = FSMField(
        default=AgreementState.DRAFT,
        choices=AgreementState.choices,
        db_index=True,
        protected=True,  # Prevent direct assignment outside transitions
        help_text="Current state of the agreement (managed by FSM)",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    sent_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the agreement was sent and became active",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the last milestone was released",
    )

    cancelled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the agreement was cancelled",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata (terms, payment terms, template id)",
    )

    objects = AgreementQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Agreement"
        verbose_name_plural = "Agreements"
        indexes = [
            models.Index(fields=["owner_id", "state"], name="agreement_owner_state_idx"),
            models.Index(fields=["counterparty_id", "state"], name="agreement_cpty_state_idx"),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, state, and total."""
        return f"Agreement({self.id}, {self.state}, {self.total_value})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        On update (not force_insert), atomically increments the version
        field to detect concurrent modifications.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # Money & Parties
    # ==========================================================================

    @property
    def total_value(self) -> Money:
        return Money(self.total_value_minor, self.currency)

    def is_owner(self, user_id: str) -> bool:
        return self.owner_id == user_id

    def is_counterparty(self, user_id: str) -> bool:
        return self.counterparty_id is not None and self.counterparty_id == user_id

    def is_party(self, user_id: str) -> bool:
        return self.is_owner(user_id) or self.is_counterparty(user_id)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=AgreementState.DRAFT,
        target=AgreementState.ACTIVE,
    )
    def send(self):
        """
        Send the agreement to the counterparty.

        Transition: DRAFT -> ACTIVE

        The structural guard (positive milestone amounts, sum equals
        total, counterparty resolved) runs in the aggregator before
        this transition is invoked.
        """
        self.sent_at = timezone.now()

    @transition(
        field=state,
        source=AgreementState.ACTIVE,
        target=AgreementState.COMPLETED,
    )
    def complete(self):
        """
        Mark the agreement as completed.

        Transition: ACTIVE -> COMPLETED

        Never called by users; runs after the last milestone is released.
        """
        self.completed_at = timezone.now()

    @transition(
        field=state,
        source=[AgreementState.DRAFT, AgreementState.ACTIVE],
        target=AgreementState.CANCELLED,
    )
    def cancel(self):
        """
        Cancel the agreement.

        Transition: DRAFT/ACTIVE -> CANCELLED

        Funded milestones must be refunded before this transition so no
        escrowed funds are orphaned.
        """
        self.cancelled_at = timezone.now()
