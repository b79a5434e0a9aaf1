"""
Pytest fixtures for escrow ledger tests.

Sections:
    - Milestone Fixtures: Milestones on one agreement to record entries against
    - Entry Fixtures: Pre-recorded ledger entries
"""

import pytest

from agreements.ledger.types import RecordEntryParams, idempotency_key_for
from agreements.state_machines import AgreementState, EntryKind
from agreements.tests.factories import AgreementFactory, EscrowEntryFactory, MilestoneFactory


# ==========================================================================
# Milestone Fixtures
# ==========================================================================


@pytest.fixture
def agreement(db):
    """Active $1000.00 agreement."""
    return AgreementFactory(state=AgreementState.ACTIVE)


@pytest.fixture
def milestone(agreement):
    """$600.00 milestone of the agreement."""
    return MilestoneFactory(agreement=agreement, sequence=1, amount_due_minor=60000)


@pytest.fixture
def other_milestone(agreement):
    """$400.00 milestone of the same agreement."""
    return MilestoneFactory(agreement=agreement, sequence=2, amount_due_minor=40000)


# ==========================================================================
# Entry Fixtures
# ==========================================================================


@pytest.fixture
def fund_params(agreement, milestone):
    """Params funding the $600.00 milestone."""
    return RecordEntryParams(
        agreement_id=agreement.id,
        milestone_id=milestone.id,
        kind=EntryKind.FUND,
        amount_minor=60000,
        currency="USD",
        actor_id=agreement.owner_id,
        idempotency_key=idempotency_key_for(EntryKind.FUND, milestone.id),
    )


@pytest.fixture
def fund_entry(agreement, milestone):
    """Recorded fund entry of $600.00."""
    return EscrowEntryFactory(
        agreement=agreement,
        milestone=milestone,
        kind=EntryKind.FUND,
        amount_minor=60000,
        idempotency_key=idempotency_key_for(EntryKind.FUND, milestone.id),
    )
