"""
Agreement templates keyed by agreement type.

Each AgreementType maps to one AgreementTemplate carrying the defaults a
new agreement of that type starts with: whether milestones must be
released in sequence, whether approval releases funds automatically, and
the default milestone split used when the owner does not supply one.

The milestone state machine is identical for every type; templates only
supply defaults.

Usage:
    from agreements.templates import get_template
    from agreements.state_machines import AgreementType

    template = get_template(AgreementType.RENT)
    template.requires_sequential_release  # True
    [m.percent for m in template.default_milestones]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from agreements.state_machines import AgreementType


@dataclass(frozen=True)
class TemplateMilestone:
    """
    A default milestone expressed as a share of the agreement total.

    Attributes:
        title: Milestone title
        percent: Share of the total value (all shares in a template sum to 100)
        description: Optional description
        due_days_from_start: Days after sending when the milestone is due
    """

    title: str
    percent: Decimal
    description: str = ""
    due_days_from_start: int | None = None


@dataclass(frozen=True)
class AgreementTemplate:
    """
    Defaults for one agreement type.

    Attributes:
        agreement_type: The type this template applies to
        title: Display title for the template
        requires_sequential_release: Milestones release strictly in sequence order
        manual_release: Approval does not release funds automatically
        default_milestones: Percent split used when no milestones are given
    """

    agreement_type: str
    title: str
    requires_sequential_release: bool = False
    manual_release: bool = False
    default_milestones: tuple[TemplateMilestone, ...] = field(default_factory=tuple)


TEMPLATES: dict[str, AgreementTemplate] = {
    AgreementType.FREELANCE: AgreementTemplate(
        agreement_type=AgreementType.FREELANCE,
        title="Freelance Project",
        default_milestones=(
            TemplateMilestone(
                "Design Phase",
                Decimal("30"),
                "Wireframes and design mockups",
                due_days_from_start=14,
            ),
            TemplateMilestone(
                "Development",
                Decimal("50"),
                "Functional, responsive build",
                due_days_from_start=35,
            ),
            TemplateMilestone(
                "Launch",
                Decimal("20"),
                "Deployment and documentation",
                due_days_from_start=42,
            ),
        ),
    ),
    AgreementType.CREATIVE: AgreementTemplate(
        agreement_type=AgreementType.CREATIVE,
        title="Creative Commission",
        default_milestones=(
            TemplateMilestone("Concept", Decimal("25"), "Initial concepts", 7),
            TemplateMilestone("Draft", Decimal("35"), "First full draft", 21),
            TemplateMilestone("Final Delivery", Decimal("40"), "Final files", 30),
        ),
    ),
    AgreementType.LOAN: AgreementTemplate(
        agreement_type=AgreementType.LOAN,
        title="Personal Loan",
        requires_sequential_release=True,
        default_milestones=(
            TemplateMilestone("Loan Disbursement", Decimal("100"), "Initial loan amount"),
        ),
    ),
    AgreementType.RENT: AgreementTemplate(
        agreement_type=AgreementType.RENT,
        title="Rental Agreement",
        requires_sequential_release=True,
        default_milestones=(
            TemplateMilestone("Security Deposit", Decimal("50"), "Refundable deposit"),
            TemplateMilestone("First Month", Decimal("50"), "First month's rent", 30),
        ),
    ),
    AgreementType.SERVICE: AgreementTemplate(
        agreement_type=AgreementType.SERVICE,
        title="Service Agreement",
        manual_release=True,
        default_milestones=(
            TemplateMilestone("Service Completion", Decimal("100"), "Service delivered"),
        ),
    ),
    AgreementType.CUSTOM: AgreementTemplate(
        agreement_type=AgreementType.CUSTOM,
        title="Custom Agreement",
    ),
}


def get_template(agreement_type: str) -> AgreementTemplate:
    """
    Return the template for an agreement type.

    Raises:
        ValueError: If the type is unknown
    """
    return TEMPLATES[AgreementType(agreement_type)]


__all__ = [
    "AgreementTemplate",
    "TemplateMilestone",
    "TEMPLATES",
    "get_template",
]
