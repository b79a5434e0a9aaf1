"""
Agreement domain models.

Models:
    Agreement: Multi-milestone agreement between an owner and a counterparty
    Milestone: Independently fundable and releasable part of an agreement
    EscrowEntry: Immutable escrow ledger entry (defined in agreements.ledger.models)
"""

from agreements.ledger.models import EscrowEntry

from .agreement import Agreement, AgreementQuerySet
from .milestone import Milestone, MilestoneQuerySet

__all__ = [
    "Agreement",
    "AgreementQuerySet",
    "EscrowEntry",
    "Milestone",
    "MilestoneQuerySet",
]
