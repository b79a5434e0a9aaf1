"""
State enums for agreement models.

This module defines all state enums used by agreement models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Agreement States:
    draft → active → completed (automatic, when every milestone is released)
    draft/active → cancelled

Milestone States:
    pending → funded → submitted → approved → released
    submitted/approved → disputed
    disputed → approved (arbitration)
    funded/disputed → refunded
"""

from django.db import models


class AgreementState(models.TextChoices):
    """
    States for the Agreement model lifecycle.

    Terminal states: COMPLETED, CANCELLED

    State Flow:
        DRAFT → ACTIVE → COMPLETED

    Cancellation Flow:
        DRAFT → CANCELLED
        ACTIVE → CANCELLED (funded milestones are refunded first)
    """

    DRAFT = "draft", "Draft"
    ACTIVE = "active", "Active"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class MilestoneState(models.TextChoices):
    """
    States for the Milestone model lifecycle.

    Terminal states: RELEASED, REFUNDED

    State Flow:
        PENDING → FUNDED → SUBMITTED → APPROVED → RELEASED

    Dispute Flow:
        SUBMITTED/APPROVED → DISPUTED → APPROVED (arbitration) → RELEASED
        SUBMITTED/APPROVED → DISPUTED → REFUNDED (arbitration)

    Refund Flow:
        FUNDED → REFUNDED
    """

    PENDING = "pending", "Pending"
    FUNDED = "funded", "Funded"
    SUBMITTED = "submitted", "Submitted"
    APPROVED = "approved", "Approved"
    RELEASED = "released", "Released"
    DISPUTED = "disputed", "Disputed"
    REFUNDED = "refunded", "Refunded"


class AgreementType(models.TextChoices):
    """
    Agreement template types.

    The state machines are identical across types; the type only selects
    template defaults (see agreements.templates).
    """

    FREELANCE = "freelance", "Freelance"
    CREATIVE = "creative", "Creative"
    LOAN = "loan", "Loan"
    RENT = "rent", "Rent"
    SERVICE = "service", "Service"
    CUSTOM = "custom", "Custom"


class EntryKind(models.TextChoices):
    """
    Kinds of escrow ledger entries.

    Values:
        FUND: Money committed into escrow for a milestone (positive)
        RELEASE: Money paid out of escrow to the counterparty (negative)
        REFUND: Money returned from escrow to the owner (negative)
        ADJUST: Correction of an earlier entry (either sign)
    """

    FUND = "fund", "Fund"
    RELEASE = "release", "Release"
    REFUND = "refund", "Refund"
    ADJUST = "adjust", "Adjust"


MILESTONE_SETTLED_STATES = frozenset({MilestoneState.RELEASED, MilestoneState.REFUNDED})

# Milestones holding escrow that refund() cannot reach
MILESTONE_IN_FLIGHT_STATES = frozenset(
    {MilestoneState.SUBMITTED, MilestoneState.APPROVED, MilestoneState.DISPUTED}
)


__all__ = [
    "AgreementState",
    "MilestoneState",
    "AgreementType",
    "EntryKind",
    "MILESTONE_SETTLED_STATES",
    "MILESTONE_IN_FLIGHT_STATES",
]
