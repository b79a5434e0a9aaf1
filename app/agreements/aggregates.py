"""
Agreement aggregator: derived, read-only figures.

Nothing computed here is stored. Released value, escrowed value and
progress are recomputed from the escrow ledger and milestone states
every time a snapshot is taken, so they cannot drift from the ledger.

Usage:
    from agreements.aggregates import AgreementAggregator

    snapshot = AgreementAggregator.snapshot(agreement)
    snapshot.released_value    # Money
    snapshot.progress_percent  # Decimal("60.00")

    AgreementAggregator.validate_for_send(agreement, milestones)  # raises InvalidAgreement
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings

from agreements.exceptions import InvalidAgreement
from agreements.ledger.services import EscrowLedger
from agreements.money import Money
from agreements.state_machines import MILESTONE_SETTLED_STATES, EntryKind, MilestoneState

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date, datetime

    from agreements.models import Agreement, Milestone


TWO_PLACES = Decimal("0.01")
FOUR_PLACES = Decimal("0.0001")


@dataclass(frozen=True)
class MilestoneSnapshot:
    """Read-only view of a milestone with its escrow balance."""

    id: str
    sequence: int
    title: str
    description: str
    amount_due: Money
    state: str
    escrow_balance: Money
    due_date: date | None
    is_overdue: bool
    deliverables: list[str] = field(default_factory=list)
    funded_at: datetime | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    released_at: datetime | None = None
    disputed_at: datetime | None = None
    refunded_at: datetime | None = None


@dataclass(frozen=True)
class AgreementSnapshot:
    """
    Read-only view of an agreement returned by every lifecycle operation.

    All money figures except total_value are derived from the ledger.
    """

    id: str
    agreement_type: str
    title: str
    description: str
    owner_id: str
    counterparty_id: str | None
    state: str
    version: int
    currency: str
    total_value: Money
    released_value: Money
    escrowed_value: Money
    refunded_value: Money
    remaining_value: Money
    progress_percent: Decimal
    progress_fraction: Decimal
    released_count: int
    milestone_count: int
    requires_sequential_release: bool
    manual_release: bool
    milestones: tuple[MilestoneSnapshot, ...]
    metadata: dict[str, Any]
    created_at: datetime | None
    updated_at: datetime | None
    sent_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None

    def milestone(self, milestone_id) -> MilestoneSnapshot | None:
        for item in self.milestones:
            if item.id == str(milestone_id):
                return item
        return None


class AgreementAggregator:
    """
    Derives aggregate figures and guards agreement-level transitions.

    All methods are static - no instance state is maintained.
    """

    @staticmethod
    def milestones_of(agreement: Agreement) -> list[Milestone]:
        """Milestones of an agreement ordered by sequence (uses a prefetch if present)."""
        return sorted(agreement.milestones.all(), key=lambda m: m.sequence)

    # ==========================================================================
    # Derived Figures
    # ==========================================================================

    @staticmethod
    def progress_percent(released: Money, total: Money) -> Decimal:
        """
        released / total * 100, two decimals, banker's rounding.

        Returns Decimal("0.00") when the total is zero.
        """
        if total.is_zero():
            return Decimal("0.00")
        ratio = Decimal(released.amount_minor) * 100 / Decimal(total.amount_minor)
        return ratio.quantize(TWO_PLACES, rounding=ROUND_HALF_EVEN)

    @staticmethod
    def released_value(agreement: Agreement, milestones: Sequence[Milestone]) -> Money:
        """
        Release outflows minus refunds scoped to released milestones.

        Never negative.
        """
        totals = EscrowLedger.totals_by_kind(agreement.id)
        released_ids = [m.id for m in milestones if m.state == MilestoneState.RELEASED]
        refunded_on_released = 0
        if released_ids:
            refunded_on_released = -EscrowLedger.totals_by_kind(
                agreement.id, released_ids
            )[EntryKind.REFUND.value]
        released_minor = -totals[EntryKind.RELEASE.value] - refunded_on_released
        return Money(max(released_minor, 0), agreement.currency)

    @staticmethod
    def snapshot(
        agreement: Agreement,
        milestones: Sequence[Milestone] | None = None,
    ) -> AgreementSnapshot:
        """
        Build the read-only snapshot of an agreement.

        Args:
            agreement: The agreement
            milestones: Its milestones, if already loaded (re-queried otherwise)
        """
        if milestones is None:
            milestones = AgreementAggregator.milestones_of(agreement)
        milestones = sorted(milestones, key=lambda m: m.sequence)

        currency = agreement.currency
        balances = EscrowLedger.balances_by_milestone(agreement.id)
        totals = EscrowLedger.totals_by_kind(agreement.id)

        milestone_snapshots = tuple(
            MilestoneSnapshot(
                id=str(m.id),
                sequence=m.sequence,
                title=m.title,
                description=m.description,
                amount_due=m.amount_due,
                state=m.state,
                escrow_balance=Money(max(balances.get(m.id, 0), 0), m.currency),
                due_date=m.due_date,
                is_overdue=m.is_overdue(),
                deliverables=list(m.deliverables or []),
                funded_at=m.funded_at,
                submitted_at=m.submitted_at,
                approved_at=m.approved_at,
                released_at=m.released_at,
                disputed_at=m.disputed_at,
                refunded_at=m.refunded_at,
            )
            for m in milestones
        )

        total_value = agreement.total_value
        released = AgreementAggregator.released_value(agreement, milestones)
        escrowed = Money(sum(max(v, 0) for v in balances.values()), currency)
        refunded = Money(max(-totals[EntryKind.REFUND.value], 0), currency)
        remaining = Money(max(total_value.amount_minor - released.amount_minor, 0), currency)

        released_count = sum(1 for m in milestones if m.state == MilestoneState.RELEASED)
        milestone_count = len(milestones)
        if milestone_count:
            fraction = (Decimal(released_count) / Decimal(milestone_count)).quantize(
                FOUR_PLACES, rounding=ROUND_HALF_EVEN
            )
        else:
            fraction = Decimal("0.0000")

        return AgreementSnapshot(
            id=str(agreement.id),
            agreement_type=agreement.agreement_type,
            title=agreement.title,
            description=agreement.description,
            owner_id=agreement.owner_id,
            counterparty_id=agreement.counterparty_id,
            state=agreement.state,
            version=agreement.version,
            currency=currency,
            total_value=total_value,
            released_value=released,
            escrowed_value=escrowed,
            refunded_value=refunded,
            remaining_value=remaining,
            progress_percent=AgreementAggregator.progress_percent(released, total_value),
            progress_fraction=fraction,
            released_count=released_count,
            milestone_count=milestone_count,
            requires_sequential_release=agreement.requires_sequential_release,
            manual_release=agreement.manual_release,
            milestones=milestone_snapshots,
            metadata=dict(agreement.metadata or {}),
            created_at=agreement.created_at,
            updated_at=agreement.updated_at,
            sent_at=agreement.sent_at,
            completed_at=agreement.completed_at,
            cancelled_at=agreement.cancelled_at,
        )

    # ==========================================================================
    # Guards
    # ==========================================================================

    @staticmethod
    def send_violations(agreement: Agreement, milestones: Sequence[Milestone]) -> list[str]:
        """
        List every structural invariant the agreement violates for sending.

        An empty list means the agreement may leave draft.
        """
        violations: list[str] = []

        if not milestones:
            violations.append("agreement has no milestones")
        if len(milestones) > settings.ESCROW_MAX_MILESTONES:
            violations.append(
                f"agreement has {len(milestones)} milestones, "
                f"at most {settings.ESCROW_MAX_MILESTONES} are allowed"
            )

        milestone_sum = 0
        for milestone in milestones:
            if milestone.currency != agreement.currency:
                violations.append(
                    f"milestone {milestone.sequence} currency {milestone.currency} "
                    f"differs from agreement currency {agreement.currency}"
                )
                continue
            if milestone.amount_due_minor <= 0:
                violations.append(f"milestone {milestone.sequence} amount must be positive")
            milestone_sum += milestone.amount_due_minor

        if milestones and milestone_sum != agreement.total_value_minor:
            violations.append(
                f"milestone amounts sum to {Money(milestone_sum, agreement.currency)}, "
                f"expected {agreement.total_value}"
            )

        if not agreement.counterparty_id:
            violations.append("counterparty is not resolved")
        elif agreement.counterparty_id == agreement.owner_id:
            violations.append("counterparty must differ from owner")

        return violations

    @staticmethod
    def validate_for_send(agreement: Agreement, milestones: Sequence[Milestone]) -> None:
        """
        Raises:
            InvalidAgreement: Listing every violated invariant
        """
        violations = AgreementAggregator.send_violations(agreement, milestones)
        if violations:
            raise InvalidAgreement(violations, details={"agreement_id": str(agreement.id)})

    @staticmethod
    def all_released(milestones: Sequence[Milestone]) -> bool:
        """True when there is at least one milestone and every one is released."""
        return bool(milestones) and all(
            m.state == MilestoneState.RELEASED for m in milestones
        )

    @staticmethod
    def unsettled_predecessors(
        milestones: Sequence[Milestone],
        milestone: Milestone,
    ) -> list[Milestone]:
        """Milestones earlier in sequence that are neither released nor refunded."""
        return [
            m
            for m in milestones
            if m.sequence < milestone.sequence and m.state not in MILESTONE_SETTLED_STATES
        ]


__all__ = [
    "AgreementAggregator",
    "AgreementSnapshot",
    "MilestoneSnapshot",
]
