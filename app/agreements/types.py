"""
Data types for lifecycle operations.

This module defines the dataclasses passed into and returned from
LifecycleService.

Types:
    CallerIdentity: Who is calling (supplied by the identity provider)
    DomainEvent: Notification of a completed state transition
    LifecycleResult: Snapshot plus emitted events, returned by every mutation
    MilestoneParams: One milestone in a create or add request
    CreateAgreementParams: Parameters for creating an agreement
    UpdateAgreementParams: Partial update of a draft agreement
    UpdateMilestoneParams: Partial update of a draft milestone

Usage:
    from agreements.types import CallerIdentity, CreateAgreementParams, MilestoneParams

    owner = CallerIdentity(user_id="user-1", display_name="Ada")
    params = CreateAgreementParams(
        agreement_type="freelance",
        title="Website build",
        counterparty_id="user-2",
        milestones=[
            MilestoneParams(title="Design", amount="600.00"),
            MilestoneParams(title="Build", amount="400.00"),
        ],
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from django.utils import timezone

if TYPE_CHECKING:
    from datetime import date, datetime
    from decimal import Decimal

    from agreements.aggregates import AgreementSnapshot
    from agreements.money import Money


ARBITER_ROLE = "arbiter"


@dataclass(frozen=True)
class CallerIdentity:
    """
    Authenticated caller as supplied by the identity provider.

    Doubles as request.user in the HTTP layer, so it exposes
    is_authenticated like Django's user objects.

    Attributes:
        user_id: Stable user ID from the identity provider
        display_name: Human-readable name
        roles: Extra roles (e.g., "arbiter")
    """

    user_id: str
    display_name: str = ""
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def is_anonymous(self) -> bool:
        return False

    @property
    def is_arbiter(self) -> bool:
        return ARBITER_ROLE in self.roles

    def __str__(self) -> str:
        return self.display_name or self.user_id


@dataclass(frozen=True)
class DomainEvent:
    """
    Notification of a completed state transition.

    Not persisted; dispatched to receivers of agreements.events.domain_event
    after the transaction commits.

    Attributes:
        type: Event type (see agreements.events.EventType)
        agreement_id: Agreement the event belongs to
        milestone_id: Milestone the event belongs to, if any
        payload: Event-specific data (JSON-serializable)
        timestamp: When the transition happened
    """

    type: str
    agreement_id: str
    milestone_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=timezone.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "agreement_id": self.agreement_id,
            "milestone_id": self.milestone_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class LifecycleResult:
    """Updated agreement snapshot and the events the operation emitted."""

    agreement: AgreementSnapshot
    events: list[DomainEvent] = field(default_factory=list)

    @property
    def event_types(self) -> list[str]:
        return [event.type for event in self.events]


@dataclass
class MilestoneParams:
    """
    One milestone in a create or add request.

    Attributes:
        title: Milestone title
        amount: Decimal string in major units (e.g., "600.00"); parsed by Money.parse
        description: Optional description
        due_date: Optional due date
        deliverables: List of deliverable descriptions
    """

    title: str
    amount: Money | str | int | Decimal
    description: str = ""
    due_date: date | None = None
    deliverables: list[str] = field(default_factory=list)


@dataclass
class CreateAgreementParams:
    """
    Parameters for creating a draft agreement.

    Required Attributes:
        agreement_type: One of AgreementType
        title: Agreement title

    Optional Attributes:
        description: Terms summary
        counterparty_id: Other party; may be resolved later, before send
        total_value: Decimal string; derived from milestones when omitted
        currency: ISO 4217 code; defaults to ESCROW_DEFAULT_CURRENCY
        milestones: Explicit milestones; template defaults when empty
        requires_sequential_release: Overrides the template default
        manual_release: Overrides the template default
        metadata: Arbitrary JSON (payment terms, notes)
    """

    agreement_type: str
    title: str
    description: str = ""
    counterparty_id: str | None = None
    total_value: Money | str | int | Decimal | None = None
    currency: str | None = None
    milestones: list[MilestoneParams] = field(default_factory=list)
    requires_sequential_release: bool | None = None
    manual_release: bool | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UpdateAgreementParams:
    """
    Partial update of a draft agreement. None leaves a field unchanged.
    """

    title: str | None = None
    description: str | None = None
    counterparty_id: str | None = None
    total_value: Money | str | int | Decimal | None = None
    requires_sequential_release: bool | None = None
    manual_release: bool | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class UpdateMilestoneParams:
    """
    Partial update of a draft milestone. None leaves a field unchanged.
    """

    title: str | None = None
    amount: Money | str | int | Decimal | None = None
    description: str | None = None
    due_date: date | None = None
    deliverables: list[str] | None = None
