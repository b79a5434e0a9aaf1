"""
Domain events for the agreement lifecycle.

Every accepted lifecycle operation returns the DomainEvents it emitted
and dispatches them through the ``domain_event`` signal once the
surrounding transaction commits. Receivers (notification delivery,
analytics) never run inside the agreement lock and their failures never
reach the caller.

Usage:
    from django.dispatch import receiver
    from agreements.events import EventType, domain_event

    @receiver(domain_event)
    def notify_counterparty(sender, event, **kwargs):
        if event.type == EventType.MILESTONE_FUNDED:
            ...
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import models, transaction
from django.dispatch import Signal

from agreements.types import DomainEvent

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Any

logger = logging.getLogger(__name__)


class EventType(models.TextChoices):
    """Types of domain events emitted by lifecycle operations."""

    AGREEMENT_CREATED = "agreement.created", "Agreement Created"
    AGREEMENT_UPDATED = "agreement.updated", "Agreement Updated"
    AGREEMENT_SENT = "agreement.sent", "Agreement Sent"
    AGREEMENT_CANCELLED = "agreement.cancelled", "Agreement Cancelled"
    AGREEMENT_COMPLETED = "agreement.completed", "Agreement Completed"
    AGREEMENT_DELETED = "agreement.deleted", "Agreement Deleted"
    MILESTONE_ADDED = "milestone.added", "Milestone Added"
    MILESTONE_UPDATED = "milestone.updated", "Milestone Updated"
    MILESTONE_REMOVED = "milestone.removed", "Milestone Removed"
    MILESTONE_FUNDED = "milestone.funded", "Milestone Funded"
    MILESTONE_SUBMITTED = "milestone.submitted", "Milestone Submitted"
    MILESTONE_APPROVED = "milestone.approved", "Milestone Approved"
    MILESTONE_RELEASED = "milestone.released", "Milestone Released"
    MILESTONE_DISPUTED = "milestone.disputed", "Milestone Disputed"
    MILESTONE_REFUNDED = "milestone.refunded", "Milestone Refunded"
    LEDGER_ADJUSTED = "ledger.adjusted", "Ledger Adjusted"


# Sent once per DomainEvent with keyword argument ``event``
domain_event = Signal()


def make_event(
    event_type: str,
    agreement_id: Any,
    milestone_id: Any = None,
    **payload: Any,
) -> DomainEvent:
    """Build a DomainEvent with string IDs."""
    return DomainEvent(
        type=str(EventType(event_type).value),
        agreement_id=str(agreement_id),
        milestone_id=str(milestone_id) if milestone_id is not None else None,
        payload=payload,
    )


def send_events(events: Sequence[DomainEvent]) -> None:
    """
    Send events to receivers now, logging receiver failures.

    Uses send_robust so one failing receiver neither stops the others
    nor propagates to the caller.
    """
    for event in events:
        responses = domain_event.send_robust(sender=DomainEvent, event=event)
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    "Domain event receiver failed",
                    extra={
                        "event_type": event.type,
                        "agreement_id": event.agreement_id,
                        "milestone_id": event.milestone_id,
                        "receiver": getattr(receiver, "__qualname__", repr(receiver)),
                        "error": str(response),
                    },
                    exc_info=(type(response), response, response.__traceback__),
                )


def dispatch_on_commit(events: Sequence[DomainEvent]) -> None:
    """
    Schedule events to be sent after the current transaction commits.

    Outside a transaction, Django runs the callback immediately. If the
    transaction rolls back, nothing is sent.
    """
    if not events:
        return
    pending = list(events)
    transaction.on_commit(lambda: send_events(pending))


__all__ = [
    "EventType",
    "domain_event",
    "make_event",
    "send_events",
    "dispatch_on_commit",
]
