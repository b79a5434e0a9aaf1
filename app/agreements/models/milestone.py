"""
Milestone model: one independently fundable unit of an agreement.

Each milestone owns a slice of the agreement total and moves through its
own state machine. Funds for a milestone are tracked exclusively in the
escrow ledger; the timestamps here only record when each transition
happened.

Usage:
    from agreements.models import Milestone

    milestone = agreement.milestones.get(sequence=1)
    milestone.fund()     # pending -> funded
    milestone.submit()   # funded -> submitted
    milestone.approve()  # submitted -> approved
    milestone.release()  # approved -> released
    milestone.save()

    # Due-date queries
    Milestone.objects.overdue()
    Milestone.objects.due_soon(days=3)
"""

from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from agreements.money import Money
from agreements.state_machines import MILESTONE_SETTLED_STATES, MilestoneState


class MilestoneQuerySet(models.QuerySet):
    """
    QuerySet with due-date helpers.

    Settled milestones (released or refunded) are never overdue or due soon.
    """

    def unsettled(self) -> MilestoneQuerySet:
        return self.exclude(state__in=list(MILESTONE_SETTLED_STATES))

    def overdue(self, today=None) -> MilestoneQuerySet:
        """Unsettled milestones whose due date has passed."""
        today = today or timezone.localdate()
        return self.unsettled().filter(due_date__lt=today)

    def due_soon(self, days: int | None = None, today=None) -> MilestoneQuerySet:
        """
        Unsettled milestones due between today and ``days`` from now, inclusive.

        ``days`` defaults to settings.ESCROW_DUE_SOON_DAYS.
        """
        if days is None:
            days = settings.ESCROW_DUE_SOON_DAYS
        today = today or timezone.localdate()
        return self.unsettled().filter(
            due_date__gte=today,
            due_date__lte=today + timedelta(days=days),
        )


class Milestone(UUIDPrimaryKeyMixin, BaseModel):
    """
    A discrete, independently fundable and releasable part of an agreement.

    State Flow:
        PENDING -> FUNDED -> SUBMITTED -> APPROVED -> RELEASED

    Dispute Flow:
        SUBMITTED/APPROVED -> DISPUTED -> APPROVED or REFUNDED

    Refund Flow:
        FUNDED -> REFUNDED

    The transitions only move state and stamp timestamps. Ledger entries,
    authorization and agreement-level guards are applied by
    agreements.services.LifecycleService around these calls.
    """

    agreement = models.ForeignKey(
        "agreements.Agreement",
        on_delete=models.PROTECT,
        related_name="milestones",
        help_text="Agreement this milestone belongs to",
    )

    title = models.CharField(
        max_length=200,
        help_text="Milestone title",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="What has to be delivered",
    )

    sequence = models.PositiveIntegerField(
        help_text="Display and release order within the agreement (1-based)",
    )

    amount_due_minor = models.BigIntegerField(
        help_text="Amount due in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO 4217 currency code (matches the agreement)",
    )

    state = FSMField(
        default=MilestoneState.PENDING,
        choices=MilestoneState.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the milestone (managed by FSM)",
    )

    due_date = models.DateField(
        null=True,
        blank=True,
        help_text="Date the deliverables are due",
    )

    deliverables = models.JSONField(
        default=list,
        blank=True,
        help_text="List of deliverable descriptions",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    funded_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    disputed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    objects = MilestoneQuerySet.as_manager()

    class Meta:
        ordering = ["agreement", "sequence"]
        verbose_name = "Milestone"
        verbose_name_plural = "Milestones"
        constraints = [
            models.UniqueConstraint(
                fields=["agreement", "sequence"],
                name="unique_milestone_sequence",
            ),
            models.CheckConstraint(
                condition=models.Q(amount_due_minor__gte=0),
                name="milestone_amount_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Milestone({self.id}, #{self.sequence}, {self.state}, {self.amount_due})"

    @property
    def amount_due(self) -> Money:
        return Money(self.amount_due_minor, self.currency)

    @property
    def is_settled(self) -> bool:
        return self.state in MILESTONE_SETTLED_STATES

    def is_overdue(self, today=None) -> bool:
        if self.due_date is None or self.is_settled:
            return False
        return self.due_date < (today or timezone.localdate())

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=MilestoneState.PENDING,
        target=MilestoneState.FUNDED,
    )
    def fund(self):
        """
        Mark the milestone as funded.

        Transition: PENDING -> FUNDED
        """
        self.funded_at = timezone.now()

    @transition(
        field=state,
        source=MilestoneState.FUNDED,
        target=MilestoneState.SUBMITTED,
    )
    def submit(self):
        """
        Counterparty submits the work for review.

        Transition: FUNDED -> SUBMITTED
        """
        self.submitted_at = timezone.now()

    @transition(
        field=state,
        source=[MilestoneState.SUBMITTED, MilestoneState.DISPUTED],
        target=MilestoneState.APPROVED,
    )
    def approve(self):
        """
        Approve the submitted work.

        Transition: SUBMITTED/DISPUTED -> APPROVED

        Approval from DISPUTED is the arbitration path.
        """
        self.approved_at = timezone.now()

    @transition(
        field=state,
        source=MilestoneState.APPROVED,
        target=MilestoneState.RELEASED,
    )
    def release(self):
        """
        Release escrowed funds to the counterparty.

        Transition: APPROVED -> RELEASED (terminal)
        """
        self.released_at = timezone.now()

    @transition(
        field=state,
        source=[MilestoneState.SUBMITTED, MilestoneState.APPROVED],
        target=MilestoneState.DISPUTED,
    )
    def dispute(self):
        """
        Freeze the milestone pending arbitration.

        Transition: SUBMITTED/APPROVED -> DISPUTED
        """
        self.disputed_at = timezone.now()

    @transition(
        field=state,
        source=[MilestoneState.FUNDED, MilestoneState.DISPUTED],
        target=MilestoneState.REFUNDED,
    )
    def refund(self):
        """
        Return escrowed funds to the owner.

        Transition: FUNDED/DISPUTED -> REFUNDED (terminal)
        """
        self.refunded_at = timezone.now()
