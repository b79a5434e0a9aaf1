"""
Pytest fixtures for agreement tests.

This module provides callers and agreements in various states. Model-level
fixtures come from factories; lifecycle fixtures are built through
LifecycleService so their ledger entries exist too.

Usage:
    def test_release_pays_out(active_agreement, owner):
        milestone = milestone_at(active_agreement, 1)
        ...
"""

import pytest

from agreements.services import LifecycleService
from agreements.state_machines import MilestoneState
from agreements.tests.factories import AgreementFactory, MilestoneFactory
from agreements.tests.helpers import get_fresh_agreement, milestone_at
from agreements.types import CallerIdentity, CreateAgreementParams, MilestoneParams


# =============================================================================
# Caller Fixtures
# =============================================================================


@pytest.fixture
def owner():
    """Agreement owner (funds escrow)."""
    return CallerIdentity(user_id="user-owner", display_name="Ada Owner")


@pytest.fixture
def counterparty():
    """Counterparty (delivers the work)."""
    return CallerIdentity(user_id="user-counterparty", display_name="Cyd Counterparty")


@pytest.fixture
def arbiter():
    """Caller carrying the arbiter role."""
    return CallerIdentity(
        user_id="user-arbiter",
        display_name="Arbiter",
        roles=frozenset({"arbiter"}),
    )


@pytest.fixture
def stranger():
    """Caller with no relation to any agreement."""
    return CallerIdentity(user_id="user-stranger")


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def agreement(db):
    """Create a draft agreement with no milestones."""
    return AgreementFactory()


@pytest.fixture
def pending_milestone(db, agreement):
    """Create a pending milestone on the draft agreement."""
    return MilestoneFactory(agreement=agreement, sequence=1)


@pytest.fixture
def funded_milestone(db, agreement):
    """Create a funded milestone."""
    milestone = MilestoneFactory(agreement=agreement, sequence=1)
    milestone.fund()
    milestone.save()
    return milestone


@pytest.fixture
def submitted_milestone(db, agreement):
    """Create a submitted milestone."""
    milestone = MilestoneFactory(agreement=agreement, sequence=1)
    milestone.fund()
    milestone.save()
    milestone.submit()
    milestone.save()
    return milestone


@pytest.fixture
def approved_milestone(db, agreement):
    """Create an approved milestone."""
    milestone = MilestoneFactory(agreement=agreement, sequence=1)
    milestone.fund()
    milestone.save()
    milestone.submit()
    milestone.save()
    milestone.approve()
    milestone.save()
    return milestone


@pytest.fixture
def disputed_milestone(db, agreement):
    """Create a disputed milestone."""
    milestone = MilestoneFactory(agreement=agreement, sequence=1)
    milestone.fund()
    milestone.save()
    milestone.submit()
    milestone.save()
    milestone.dispute()
    milestone.save()
    return milestone


@pytest.fixture
def released_milestone(db, agreement):
    """Create a released milestone."""
    return MilestoneFactory(agreement=agreement, sequence=1, state=MilestoneState.RELEASED)


@pytest.fixture
def refunded_milestone(db, agreement):
    """Create a refunded milestone."""
    return MilestoneFactory(agreement=agreement, sequence=1, state=MilestoneState.REFUNDED)


# =============================================================================
# Lifecycle Fixtures
# =============================================================================


@pytest.fixture
def draft_agreement(db, owner, counterparty):
    """
    Draft $1000.00 freelance agreement with two milestones.

    Milestone 1: Design, $600.00
    Milestone 2: Build, $400.00
    """
    result = LifecycleService.create_agreement(
        owner,
        CreateAgreementParams(
            agreement_type="freelance",
            title="Website build",
            counterparty_id=counterparty.user_id,
            total_value="1000.00",
            milestones=[
                MilestoneParams(title="Design", amount="600.00"),
                MilestoneParams(title="Build", amount="400.00"),
            ],
        ),
    )
    assert result.success, result.error
    return get_fresh_agreement(result.data.agreement.id)


@pytest.fixture
def active_agreement(draft_agreement, owner):
    """The draft agreement after send (both milestones pending)."""
    result = LifecycleService.send(owner, draft_agreement.id)
    assert result.success, result.error
    return get_fresh_agreement(draft_agreement.id)


@pytest.fixture
def funded_agreement(active_agreement, owner):
    """Active agreement with both milestones funded."""
    for sequence, amount in ((1, "600.00"), (2, "400.00")):
        milestone = milestone_at(active_agreement, sequence)
        result = LifecycleService.fund(owner, active_agreement.id, milestone.id, amount)
        assert result.success, result.error
    return get_fresh_agreement(active_agreement.id)
