"""
Tests for agreement and milestone state machine transitions.

Tests verify that:
- Valid transitions work correctly
- Invalid transitions raise TransitionNotAllowed
- Timestamps are set on transitions
- Protected state fields cannot be assigned directly
"""

import pytest
from django_fsm import TransitionNotAllowed, can_proceed

from agreements.models import Milestone
from agreements.state_machines import AgreementState, MilestoneState
from agreements.tests.factories import AgreementFactory


# =============================================================================
# Agreement State Transitions
# =============================================================================


class TestAgreementTransitions:
    """Tests for Agreement state machine."""

    # -------------------------------------------------------------------------
    # Valid Transitions
    # -------------------------------------------------------------------------

    def test_send_from_draft(self, agreement):
        """Should transition from draft to active."""
        agreement.send()
        agreement.save()

        assert agreement.state == AgreementState.ACTIVE
        assert agreement.sent_at is not None

    def test_complete_from_active(self, db):
        """Should transition from active to completed."""
        agreement = AgreementFactory(state=AgreementState.ACTIVE)

        agreement.complete()
        agreement.save()

        assert agreement.state == AgreementState.COMPLETED
        assert agreement.completed_at is not None

    def test_cancel_from_draft(self, agreement):
        """Should transition from draft to cancelled."""
        agreement.cancel()
        agreement.save()

        assert agreement.state == AgreementState.CANCELLED
        assert agreement.cancelled_at is not None

    def test_cancel_from_active(self, db):
        """Should transition from active to cancelled."""
        agreement = AgreementFactory(state=AgreementState.ACTIVE)

        agreement.cancel()
        agreement.save()

        assert agreement.state == AgreementState.CANCELLED

    # -------------------------------------------------------------------------
    # Invalid Transitions
    # -------------------------------------------------------------------------

    def test_cannot_complete_from_draft(self, agreement):
        """Should not allow completing a draft."""
        with pytest.raises(TransitionNotAllowed):
            agreement.complete()

    def test_cannot_send_twice(self, db):
        """Should not allow sending an active agreement."""
        agreement = AgreementFactory(state=AgreementState.ACTIVE)

        with pytest.raises(TransitionNotAllowed):
            agreement.send()

    @pytest.mark.parametrize("state", [AgreementState.COMPLETED, AgreementState.CANCELLED])
    def test_terminal_states_allow_nothing(self, db, state):
        """Completed and cancelled agreements are terminal."""
        agreement = AgreementFactory(state=state)

        assert not can_proceed(agreement.send)
        assert not can_proceed(agreement.complete)
        assert not can_proceed(agreement.cancel)

    def test_state_field_is_protected(self, agreement):
        """Should refuse direct assignment to the FSM state field."""
        with pytest.raises(AttributeError):
            agreement.state = AgreementState.ACTIVE


# =============================================================================
# Milestone State Transitions
# =============================================================================


class TestMilestoneTransitions:
    """Tests for Milestone state machine."""

    # -------------------------------------------------------------------------
    # Valid Transitions
    # -------------------------------------------------------------------------

    def test_fund_from_pending(self, pending_milestone):
        """Should transition from pending to funded."""
        pending_milestone.fund()
        pending_milestone.save()

        assert pending_milestone.state == MilestoneState.FUNDED
        assert pending_milestone.funded_at is not None

    def test_submit_from_funded(self, funded_milestone):
        """Should transition from funded to submitted."""
        funded_milestone.submit()
        funded_milestone.save()

        assert funded_milestone.state == MilestoneState.SUBMITTED
        assert funded_milestone.submitted_at is not None

    def test_approve_from_submitted(self, submitted_milestone):
        """Should transition from submitted to approved."""
        submitted_milestone.approve()
        submitted_milestone.save()

        assert submitted_milestone.state == MilestoneState.APPROVED
        assert submitted_milestone.approved_at is not None

    def test_release_from_approved(self, approved_milestone):
        """Should transition from approved to released."""
        approved_milestone.release()
        approved_milestone.save()

        assert approved_milestone.state == MilestoneState.RELEASED
        assert approved_milestone.released_at is not None

    def test_dispute_from_submitted(self, submitted_milestone):
        """Should transition from submitted to disputed."""
        submitted_milestone.dispute()
        submitted_milestone.save()

        assert submitted_milestone.state == MilestoneState.DISPUTED
        assert submitted_milestone.disputed_at is not None

    def test_dispute_from_approved(self, approved_milestone):
        """Should transition from approved to disputed."""
        approved_milestone.dispute()
        approved_milestone.save()

        assert approved_milestone.state == MilestoneState.DISPUTED

    def test_approve_from_disputed(self, disputed_milestone):
        """Arbitration in the counterparty's favour re-approves."""
        disputed_milestone.approve()
        disputed_milestone.save()

        assert disputed_milestone.state == MilestoneState.APPROVED

    def test_refund_from_funded(self, funded_milestone):
        """Should transition from funded to refunded."""
        funded_milestone.refund()
        funded_milestone.save()

        assert funded_milestone.state == MilestoneState.REFUNDED
        assert funded_milestone.refunded_at is not None

    def test_refund_from_disputed(self, disputed_milestone):
        """Arbitration in the owner's favour refunds."""
        disputed_milestone.refund()
        disputed_milestone.save()

        assert disputed_milestone.state == MilestoneState.REFUNDED

    # -------------------------------------------------------------------------
    # Invalid Transitions
    # -------------------------------------------------------------------------

    def test_cannot_submit_unfunded(self, pending_milestone):
        """Work cannot be submitted before escrow is funded."""
        with pytest.raises(TransitionNotAllowed):
            pending_milestone.submit()

    def test_cannot_release_submitted(self, submitted_milestone):
        """Release requires approval first."""
        with pytest.raises(TransitionNotAllowed):
            submitted_milestone.release()

    def test_cannot_fund_twice(self, funded_milestone):
        with pytest.raises(TransitionNotAllowed):
            funded_milestone.fund()

    def test_cannot_dispute_funded(self, funded_milestone):
        """Only submitted or approved work can be disputed."""
        with pytest.raises(TransitionNotAllowed):
            funded_milestone.dispute()

    def test_cannot_refund_approved(self, approved_milestone):
        """Approved funds are refunded only through a dispute."""
        with pytest.raises(TransitionNotAllowed):
            approved_milestone.refund()

    @pytest.mark.parametrize(
        "transition", ["fund", "submit", "approve", "release", "dispute", "refund"]
    )
    def test_released_is_terminal(self, released_milestone, transition):
        assert not can_proceed(getattr(released_milestone, transition))

    @pytest.mark.parametrize(
        "transition", ["fund", "submit", "approve", "release", "dispute", "refund"]
    )
    def test_refunded_is_terminal(self, refunded_milestone, transition):
        assert not can_proceed(getattr(refunded_milestone, transition))

    def test_state_persists_after_fetch(self, funded_milestone):
        """Saved state should be read back from the database."""
        fetched = Milestone.objects.get(id=funded_milestone.id)

        assert fetched.state == MilestoneState.FUNDED
