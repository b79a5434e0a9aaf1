"""
Escrow ledger - append-only record of milestone fund movements.

Public API:
    Models:
        EscrowEntry - Immutable record of one fund movement

    Service:
        escrow_ledger - Singleton instance of EscrowLedger
        EscrowLedger - Class with all ledger operations

    Types:
        RecordEntryParams - Parameters for recording entries
        idempotency_key_for - Key builder for once-per-milestone movements

Usage:
    from agreements.ledger import escrow_ledger, RecordEntryParams, idempotency_key_for

    escrow_ledger.record_entry(RecordEntryParams(
        agreement_id=agreement.id,
        milestone_id=milestone.id,
        kind=EntryKind.FUND,
        amount_minor=60000,
        currency="USD",
        actor_id=owner_id,
        idempotency_key=idempotency_key_for(EntryKind.FUND, milestone.id),
    ))

    escrow_ledger.balance_for(milestone.id)  # Money(60000, "USD")
"""

from .models import EscrowEntry, EscrowEntryQuerySet
from .services import EscrowLedger, escrow_ledger
from .types import RecordEntryParams, idempotency_key_for

__all__ = [
    # Models
    "EscrowEntry",
    "EscrowEntryQuerySet",
    # Service
    "escrow_ledger",
    "EscrowLedger",
    # Types
    "RecordEntryParams",
    "idempotency_key_for",
]
