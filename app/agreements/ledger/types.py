"""
Data types for escrow ledger operations.

Types:
    RecordEntryParams: Parameters for recording an escrow entry

Usage:
    from agreements.ledger.types import RecordEntryParams

    params = RecordEntryParams(
        agreement_id=agreement.id,
        milestone_id=milestone.id,
        kind=EntryKind.FUND,
        amount_minor=60000,
        currency="USD",
        actor_id="user-1",
        idempotency_key=f"fund:{milestone.id}",
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from agreements.state_machines import EntryKind


def idempotency_key_for(kind: str, milestone_id: uuid.UUID) -> str:
    """
    Build the ledger key for a once-per-milestone movement.

    Example:
        idempotency_key_for(EntryKind.RELEASE, milestone.id)  # "release:<uuid>"
    """
    return f"{EntryKind(kind).value}:{milestone_id}"


@dataclass
class RecordEntryParams:
    """
    Parameters for recording an escrow entry.

    Required Attributes:
        agreement_id: UUID of the agreement whose escrow moves
        milestone_id: UUID of the milestone the movement belongs to
        kind: fund, release, refund or adjust
        amount_minor: Signed amount in minor units
        currency: ISO 4217 currency code
        actor_id: User ID of the caller causing the movement
        idempotency_key: Unique key to prevent duplicate entries

    Optional Attributes:
        payload: Arbitrary JSON-serializable data

    Signs are validated here: fund must be positive, release and refund
    negative, adjust non-zero.
    """

    # Required fields
    agreement_id: uuid.UUID
    milestone_id: uuid.UUID
    kind: str
    amount_minor: int
    currency: str
    actor_id: str
    idempotency_key: str

    # Optional fields
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate params after initialization."""
        kind = EntryKind(self.kind)
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if kind == EntryKind.FUND and self.amount_minor <= 0:
            raise ValueError("fund entries must be positive")
        if kind in (EntryKind.RELEASE, EntryKind.REFUND) and self.amount_minor >= 0:
            raise ValueError(f"{kind.value} entries must be negative")
        if kind == EntryKind.ADJUST and self.amount_minor == 0:
            raise ValueError("adjust entries must be non-zero")
