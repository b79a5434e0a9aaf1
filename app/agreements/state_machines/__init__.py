"""
State machine enums and helpers for agreement models.

This module defines the state enums used by agreement models with django-fsm.
"""

from agreements.state_machines.states import (
    MILESTONE_IN_FLIGHT_STATES,
    MILESTONE_SETTLED_STATES,
    AgreementState,
    AgreementType,
    EntryKind,
    MilestoneState,
)

__all__ = [
    "AgreementState",
    "AgreementType",
    "EntryKind",
    "MilestoneState",
    "MILESTONE_IN_FLIGHT_STATES",
    "MILESTONE_SETTLED_STATES",
]
