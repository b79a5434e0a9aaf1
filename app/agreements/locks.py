"""
Concurrency control for agreement operations.

Each agreement, with its milestones and its ledger slice, is one unit of
mutual exclusion. Mutating operations re-fetch the agreement row with
select_for_update() inside a transaction and, when the caller passes the
version it last saw, verify it before changing anything.

Usage:
    from django.db import transaction
    from agreements.locks import lock_agreement

    with transaction.atomic():
        agreement = lock_agreement(agreement_id, expected_version=3)
        agreement.send()
        agreement.save()  # Version auto-increments to 4

Note:
    Must be called within a transaction context. The row lock is held
    until the transaction commits or rolls back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError

from agreements.exceptions import NotFound, StaleRecordError
from agreements.models import Agreement

if TYPE_CHECKING:
    from typing import Any


def lock_agreement(
    agreement_id: Any,
    expected_version: int | None = None,
) -> Agreement:
    """
    Lock an agreement row and optionally check its version.

    Combines pessimistic locking (select_for_update) with an optimistic
    version check so a caller acting on a stale read is rejected even
    though it eventually obtained the lock.

    Args:
        agreement_id: Primary key of the agreement
        expected_version: Version the caller expects, or None to skip the check

    Returns:
        The locked Agreement instance

    Raises:
        NotFound: If the agreement doesn't exist
        StaleRecordError: If the version doesn't match (concurrent modification)
    """
    try:
        agreement = Agreement.objects.select_for_update().filter(pk=agreement_id).first()
    except (DjangoValidationError, ValueError):
        agreement = None

    if agreement is None:
        raise NotFound(
            f"Agreement {agreement_id} not found",
            details={"agreement_id": str(agreement_id)},
        )

    if expected_version is not None and agreement.version != expected_version:
        raise StaleRecordError(
            f"Agreement {agreement_id} has been modified "
            f"(expected version {expected_version}, current {agreement.version})",
            details={
                "agreement_id": str(agreement_id),
                "expected_version": expected_version,
                "current_version": agreement.version,
            },
        )

    return agreement


__all__ = [
    "lock_agreement",
]
