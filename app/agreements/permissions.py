"""
Role checks for lifecycle operations.

Roles:
    owner:        edits drafts, sends, funds, cancels, releases,
                  refunds a funded milestone
    counterparty: submits, approves and disputes milestones
    arbiter:      approves or refunds a disputed milestone, records
                  ledger adjustments (identity carrying the "arbiter" role)
    viewer:       owner, counterparty or arbiter

Every check raises Forbidden; none returns a boolean.

Usage:
    from agreements.permissions import ensure_owner

    ensure_owner(agreement, caller, "send")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from agreements.exceptions import Forbidden

if TYPE_CHECKING:
    from agreements.models import Agreement
    from agreements.types import CallerIdentity


def _forbidden(agreement: Agreement | None, caller: CallerIdentity, action: str, role: str):
    details = {"action": action, "user_id": caller.user_id, "required_role": role}
    if agreement is not None:
        details["agreement_id"] = str(agreement.id)
    return Forbidden(f"Only the {role} can {action}", details=details)


def ensure_can_view(agreement: Agreement, caller: CallerIdentity) -> None:
    if agreement.is_party(caller.user_id) or caller.is_arbiter:
        return
    raise _forbidden(agreement, caller, "view this agreement", "owner, counterparty or arbiter")


def ensure_owner(agreement: Agreement, caller: CallerIdentity, action: str) -> None:
    if not agreement.is_owner(caller.user_id):
        raise _forbidden(agreement, caller, action, "owner")


def ensure_counterparty(agreement: Agreement, caller: CallerIdentity, action: str) -> None:
    if not agreement.is_counterparty(caller.user_id):
        raise _forbidden(agreement, caller, action, "counterparty")


def ensure_arbiter(agreement: Agreement | None, caller: CallerIdentity, action: str) -> None:
    if not caller.is_arbiter:
        raise _forbidden(agreement, caller, action, "arbiter")


__all__ = [
    "ensure_arbiter",
    "ensure_can_view",
    "ensure_counterparty",
    "ensure_owner",
]
