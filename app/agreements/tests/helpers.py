"""
Lookup helpers shared by agreement tests.

django-fsm's protected FSMField refuses refresh_from_db() on the state
field, so tests re-fetch instances instead of refreshing them.
"""

from agreements.ledger.models import EscrowEntry
from agreements.models import Agreement, Milestone


def get_fresh_agreement(agreement_id) -> Agreement:
    """Get a fresh Agreement instance from the database."""
    return Agreement.objects.get(id=agreement_id)


def get_fresh_milestone(milestone_id) -> Milestone:
    """Get a fresh Milestone instance from the database."""
    return Milestone.objects.get(id=milestone_id)


def milestone_at(agreement, sequence: int) -> Milestone:
    """Fresh milestone of an agreement by sequence number."""
    return Milestone.objects.get(agreement_id=agreement.id, sequence=sequence)


def entries_of(agreement, kind=None) -> list[EscrowEntry]:
    """Ledger entries of an agreement in order, optionally of one kind."""
    entries = EscrowEntry.objects.for_agreement(agreement.id).in_order()
    if kind is not None:
        entries = entries.filter(kind=kind)
    return list(entries)
