"""
Escrow lifecycle exceptions.

This module provides the typed errors every lifecycle operation can
reject with. They inherit from the core exception hierarchy so that the
HTTP layer renders them through to_dict() like every other domain error.

Exception Hierarchy:
    EscrowError (base, BaseApplicationError)
    ├── InvalidAgreement - Structural invariant violated before activation
    ├── InvalidAmount - Unparseable, negative or over-precise amount input
    ├── AmountMismatch - Funded amount differs from milestone amount due
    └── CurrencyMismatch - Arithmetic between different currencies

    Forbidden (PermissionDeniedError) - Caller may not perform the operation
    NotFound (NotFoundError) - Agreement, milestone or entry does not exist

    InvalidTransition (ConflictError) - State machine guard failed
    AlreadyReleased (ConflictError) - Release entry already exists
    StaleRecordError (ConflictError) - Expected version no longer current
    ImmutableEntryError (ConflictError) - Ledger entry update/delete attempted

Usage:
    from agreements.exceptions import AmountMismatch, InvalidTransition

    if amount != milestone.amount_due:
        raise AmountMismatch(milestone.id, expected=milestone.amount_due, received=amount)

    raise InvalidTransition(
        "Cannot submit milestone from 'pending' state",
        details={"current_state": "pending", "transition": "submit"},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)

if TYPE_CHECKING:
    from typing import Any

    from agreements.money import Money


# =============================================================================
# Validation Errors
# =============================================================================


class EscrowError(BaseApplicationError):
    """
    Base exception for escrow validation failures.

    Example:
        try:
            amount = Money.parse(text, "USD")
        except EscrowError as e:
            return Response(e.to_dict(), status=400)
    """

    default_error_code: str = "ESCROW_ERROR"


class InvalidAgreement(EscrowError):
    """
    Raised when an agreement violates a structural invariant.

    Used by create and send. The violated invariants are listed in
    ``violations`` and mirrored in ``details["violations"]``.

    Example:
        raise InvalidAgreement([
            "counterparty is not resolved",
            "milestone amounts sum to 900.00 USD, expected 1000.00 USD",
        ])
    """

    default_error_code: str = "INVALID_AGREEMENT"

    def __init__(
        self,
        violations: list[str],
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.violations = list(violations)
        full_details: dict[str, Any] = {"violations": self.violations}
        if details:
            full_details.update(details)
        super().__init__(
            message="Agreement is invalid: " + "; ".join(self.violations),
            error_code=error_code,
            details=full_details,
        )


class InvalidAmount(EscrowError):
    """
    Raised when monetary input cannot be accepted.

    Use for:
    - Non-numeric strings ("abc", "")
    - Negative amounts
    - More fractional digits than the currency's minor unit ("1.005" USD)
    - Invalid percent splits
    """

    default_error_code: str = "INVALID_AMOUNT"


class AmountMismatch(EscrowError):
    """
    Raised when a funding amount differs from the milestone amount due.

    Attributes:
        milestone_id: The milestone being funded
        expected: Amount due on the milestone
        received: Amount the caller tried to fund
    """

    default_error_code: str = "AMOUNT_MISMATCH"

    def __init__(
        self,
        milestone_id: Any,
        expected: Money,
        received: Money,
        error_code: str | None = None,
    ):
        self.milestone_id = milestone_id
        self.expected = expected
        self.received = received
        super().__init__(
            message=(
                f"Funded amount {received} must equal milestone amount {expected}"
            ),
            error_code=error_code,
            details={
                "milestone_id": str(milestone_id),
                "expected_minor": expected.amount_minor,
                "received_minor": received.amount_minor,
                "currency": expected.currency,
            },
        )


class CurrencyMismatch(EscrowError):
    """
    Raised when Money arithmetic mixes currencies.

    Example:
        Money(100, "USD") + Money(100, "EUR")  # raises CurrencyMismatch
    """

    default_error_code: str = "CURRENCY_MISMATCH"

    def __init__(self, left: str, right: str, operation: str = "combine"):
        self.left = left
        self.right = right
        super().__init__(
            message=f"Cannot {operation} Money with different currencies: {left} and {right}",
            details={"left_currency": left, "right_currency": right},
        )


# =============================================================================
# Authorization & Lookup Errors
# =============================================================================


class Forbidden(PermissionDeniedError):
    """
    Raised when the caller's role does not allow the operation.

    Example:
        raise Forbidden(
            "Only the counterparty can submit a milestone",
            details={"action": "submit", "user_id": caller.user_id},
        )
    """

    default_error_code: str = "FORBIDDEN"


class NotFound(NotFoundError):
    """Raised when an agreement, milestone or ledger entry does not exist."""

    default_error_code: str = "NOT_FOUND"


# =============================================================================
# State Conflicts
# =============================================================================


class InvalidTransition(ConflictError):
    """
    Raised when a state machine guard rejects an operation.

    Wraps django-fsm's TransitionNotAllowed and the agreement-level
    guards (agreement not active, sequential release, in-flight
    milestones on cancel).

    Attributes:
        details: Contains current_state and transition name
    """

    default_error_code: str = "INVALID_TRANSITION"


class AlreadyReleased(ConflictError):
    """
    Raised when a release entry already exists for a milestone.

    The ledger is checked before the state guard, so a repeated
    release always reports this error rather than a generic
    InvalidTransition.
    """

    default_error_code: str = "ALREADY_RELEASED"

    def __init__(self, milestone_id: Any):
        self.milestone_id = milestone_id
        super().__init__(
            message=f"Milestone {milestone_id} has already been released",
            details={"milestone_id": str(milestone_id)},
        )


class StaleRecordError(ConflictError):
    """
    Raised when the caller's expected agreement version is not current.

    The other party modified the agreement between the caller's read and
    this write. The caller should reload and decide again.
    """

    default_error_code: str = "STALE_RECORD"


class ImmutableEntryError(ConflictError):
    """
    Raised when code tries to update or delete a ledger entry.

    Corrections are recorded as new ``adjust`` entries instead.
    """

    default_error_code: str = "IMMUTABLE_ENTRY"


__all__ = [
    "EscrowError",
    "InvalidAgreement",
    "InvalidAmount",
    "AmountMismatch",
    "CurrencyMismatch",
    "Forbidden",
    "NotFound",
    "InvalidTransition",
    "AlreadyReleased",
    "StaleRecordError",
    "ImmutableEntryError",
]
