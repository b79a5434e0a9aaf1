"""
Lifecycle service: the single entry point for agreement operations.

Every mutating operation follows the same shape:

1. Lock the agreement row (select_for_update) and check expected_version
2. Check the caller's role
3. Run the state machine guard (django-fsm can_proceed)
4. Append escrow ledger entries and save the transitions
5. Re-derive the snapshot from the ledger
6. Schedule domain events for after commit

Steps 1-5 run in one transaction. A rejected operation raises inside the
transaction, so the rollback leaves prior state intact, and the error is
returned as ServiceResult.failure. No operation retries internally.

Usage:
    from agreements.services import LifecycleService
    from agreements.types import CallerIdentity

    owner = CallerIdentity(user_id="user-1")
    result = LifecycleService.fund(owner, agreement_id, milestone_id, "600.00")
    if result.success:
        result.data.agreement.escrowed_value  # Money(60000, "USD")
        result.data.events                    # [DomainEvent(type="milestone.funded", ...)]
    else:
        result.error_code                     # e.g. "AMOUNT_MISMATCH"
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone

from django_fsm import can_proceed

from core.exceptions import BaseApplicationError, ValidationError
from core.services import BaseService, ServiceResult

from agreements.aggregates import AgreementAggregator, AgreementSnapshot
from agreements.events import EventType, dispatch_on_commit, make_event
from agreements.exceptions import (
    AlreadyReleased,
    AmountMismatch,
    CurrencyMismatch,
    InvalidAgreement,
    InvalidAmount,
    InvalidTransition,
    NotFound,
)
from agreements.ledger import RecordEntryParams, escrow_ledger, idempotency_key_for
from agreements.locks import lock_agreement
from agreements.models import Agreement, Milestone
from agreements.money import Money, ensure_storable, normalize_currency
from agreements.permissions import (
    ensure_arbiter,
    ensure_can_view,
    ensure_counterparty,
    ensure_owner,
)
from agreements.state_machines import (
    MILESTONE_IN_FLIGHT_STATES,
    AgreementState,
    AgreementType,
    EntryKind,
    MilestoneState,
)
from agreements.templates import get_template
from agreements.types import LifecycleResult

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from agreements.ledger import EscrowEntry
    from agreements.types import (
        CallerIdentity,
        CreateAgreementParams,
        DomainEvent,
        MilestoneParams,
        UpdateAgreementParams,
        UpdateMilestoneParams,
    )

    Handler = Callable[[Agreement, list[Milestone]], list[DomainEvent]]

logger = logging.getLogger(__name__)


class LifecycleService(BaseService):
    """
    Service for the agreement and milestone escrow lifecycle.

    All methods are classmethods - the service is stateless; state lives in
    the agreement rows locked per operation.

    Every operation returns ServiceResult[LifecycleResult] except
    list_agreements (ServiceResult[list[AgreementSnapshot]]) and
    ledger_for (ServiceResult[list[EscrowEntry]]).
    """

    # ==========================================================================
    # Execution helpers
    # ==========================================================================

    @classmethod
    def _execute(
        cls,
        operation: str,
        caller: CallerIdentity,
        agreement_id: Any,
        handler: Handler,
        expected_version: int | None = None,
        milestone_id: Any = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Run a mutating operation under the agreement lock.

        The agreement is saved after the handler so its version moves on
        every accepted operation, including milestone-only transitions.
        """
        log_extra: dict[str, Any] = {
            "operation": operation,
            "agreement_id": str(agreement_id),
            "user_id": caller.user_id,
        }
        if milestone_id is not None:
            log_extra["milestone_id"] = str(milestone_id)

        try:
            with cls.atomic():
                agreement = lock_agreement(agreement_id, expected_version)
                milestones = AgreementAggregator.milestones_of(agreement)
                events = handler(agreement, milestones)
                agreement.save()
                snapshot = AgreementAggregator.snapshot(agreement)
                dispatch_on_commit(events)
        except BaseApplicationError as e:
            return cls.handle_exception(
                e, f"{operation} rejected", log_level=logging.WARNING, extra=log_extra
            )

        cls.get_logger().info(
            f"{operation} accepted",
            extra={
                **log_extra,
                "state": snapshot.state,
                "version": snapshot.version,
                "event_types": [event.type for event in events],
            },
        )
        return ServiceResult.success(LifecycleResult(agreement=snapshot, events=events))

    @staticmethod
    def _find_milestone(milestones: list[Milestone], milestone_id: Any) -> Milestone:
        for milestone in milestones:
            if str(milestone.id) == str(milestone_id):
                return milestone
        raise NotFound(
            f"Milestone {milestone_id} not found",
            details={"milestone_id": str(milestone_id)},
        )

    @staticmethod
    def _ensure_can(instance: Agreement | Milestone, transition: str) -> None:
        """
        Check a django-fsm transition guard without running it.

        Raises:
            InvalidTransition: If the transition is not allowed from the current state
        """
        if not can_proceed(getattr(instance, transition)):
            label = instance.__class__.__name__.lower()
            raise InvalidTransition(
                f"Cannot {transition} {label} from '{instance.state}' state",
                details={
                    f"{label}_id": str(instance.id),
                    "current_state": instance.state,
                    "transition": transition,
                },
            )

    @classmethod
    def _apply(cls, instance: Agreement | Milestone, transition: str) -> None:
        """Run a django-fsm transition after checking its guard."""
        cls._ensure_can(instance, transition)
        getattr(instance, transition)()

    @staticmethod
    def _ensure_active(agreement: Agreement, action: str) -> None:
        if agreement.state != AgreementState.ACTIVE:
            raise InvalidTransition(
                f"Cannot {action} while the agreement is '{agreement.state}'",
                details={
                    "agreement_id": str(agreement.id),
                    "current_state": agreement.state,
                    "transition": action,
                },
            )

    @staticmethod
    def _ensure_draft(agreement: Agreement, action: str) -> None:
        if agreement.state != AgreementState.DRAFT:
            raise InvalidTransition(
                f"Cannot {action} once the agreement is '{agreement.state}'",
                details={
                    "agreement_id": str(agreement.id),
                    "current_state": agreement.state,
                    "transition": action,
                },
            )

    @staticmethod
    def _accept_money(value: Money, currency: str) -> Money:
        """
        Check a Money passed in directly against the agreement currency.

        Raises:
            CurrencyMismatch: If value is in another currency
            InvalidAmount: If value does not fit an amount column
        """
        code = normalize_currency(currency)
        if value.currency != code:
            raise CurrencyMismatch(code, value.currency, "accept")
        ensure_storable(value)
        return value

    @classmethod
    def _parse_amount(cls, value: Money | str | int | Decimal, currency: str) -> Money:
        if isinstance(value, Money):
            if value.is_negative():
                raise InvalidAmount(
                    f"Amount {value} must not be negative",
                    details={"value": str(value)},
                )
            return cls._accept_money(value, currency)
        return Money.parse(value, currency)

    @classmethod
    def _parse_signed_amount(
        cls, value: Money | str | int | Decimal, currency: str
    ) -> Money:
        """Like _parse_amount, but accepts a leading minus sign."""
        if isinstance(value, Money):
            return cls._accept_money(value, currency)
        if isinstance(value, (str, int, Decimal)) and not isinstance(value, bool):
            text = str(value).strip()
            if text.startswith("-"):
                return Money.parse(text[1:], currency).negate()
        return Money.parse(value, currency)

    @staticmethod
    def _ensure_milestone_capacity(count: int) -> None:
        limit = settings.ESCROW_MAX_MILESTONES
        if count > limit:
            raise InvalidAgreement(
                [f"agreement has {count} milestones, at most {limit} are allowed"]
            )

    # ==========================================================================
    # Ledger-backed milestone moves
    # ==========================================================================

    @classmethod
    def _release(
        cls,
        agreement: Agreement,
        milestone: Milestone,
        actor_id: str,
    ) -> DomainEvent:
        """Append the release entry and move the milestone to RELEASED."""
        escrow_ledger.record_entry(
            RecordEntryParams(
                agreement_id=agreement.id,
                milestone_id=milestone.id,
                kind=EntryKind.RELEASE,
                amount_minor=-milestone.amount_due_minor,
                currency=milestone.currency,
                actor_id=actor_id,
                idempotency_key=idempotency_key_for(EntryKind.RELEASE, milestone.id),
            )
        )
        cls._apply(milestone, "release")
        milestone.save()
        return make_event(
            EventType.MILESTONE_RELEASED,
            agreement.id,
            milestone.id,
            amount_minor=milestone.amount_due_minor,
            currency=milestone.currency,
        )

    @classmethod
    def _refund(
        cls,
        agreement: Agreement,
        milestone: Milestone,
        actor_id: str,
        reason: str = "",
    ) -> DomainEvent:
        """Return the milestone's remaining escrow balance and move it to REFUNDED."""
        balance = escrow_ledger.balance_for(milestone.id, milestone.currency)
        cls._apply(milestone, "refund")
        if balance.amount_minor > 0:
            escrow_ledger.record_entry(
                RecordEntryParams(
                    agreement_id=agreement.id,
                    milestone_id=milestone.id,
                    kind=EntryKind.REFUND,
                    amount_minor=-balance.amount_minor,
                    currency=milestone.currency,
                    actor_id=actor_id,
                    idempotency_key=idempotency_key_for(EntryKind.REFUND, milestone.id),
                    payload={"reason": reason} if reason else {},
                )
            )
        milestone.save()
        return make_event(
            EventType.MILESTONE_REFUNDED,
            agreement.id,
            milestone.id,
            amount_minor=max(balance.amount_minor, 0),
            currency=milestone.currency,
            reason=reason,
        )

    @classmethod
    def _settle_follow_ups(
        cls,
        agreement: Agreement,
        milestones: list[Milestone],
        actor_id: str,
    ) -> list[DomainEvent]:
        """
        Release approved milestones that were waiting, then check completion.

        Approved milestones are released automatically (unless the agreement
        is manual-release) once every earlier milestone is settled. Releasing
        one can unblock the next, so a single pass in sequence order
        releases the whole ready chain.
        """
        events: list[DomainEvent] = []
        if not agreement.manual_release:
            for milestone in sorted(milestones, key=lambda m: m.sequence):
                if milestone.state != MilestoneState.APPROVED:
                    continue
                if agreement.requires_sequential_release and (
                    AgreementAggregator.unsettled_predecessors(milestones, milestone)
                ):
                    continue
                events.append(cls._release(agreement, milestone, actor_id))

        if agreement.state == AgreementState.ACTIVE and AgreementAggregator.all_released(
            milestones
        ):
            cls._apply(agreement, "complete")
            events.append(
                make_event(
                    EventType.AGREEMENT_COMPLETED,
                    agreement.id,
                    total_minor=agreement.total_value_minor,
                    currency=agreement.currency,
                )
            )
        return events

    # ==========================================================================
    # Queries
    # ==========================================================================

    @classmethod
    def get_agreement(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
    ) -> ServiceResult[LifecycleResult]:
        """
        Return the agreement snapshot if the caller may view it.

        Failures: NOT_FOUND, FORBIDDEN
        """
        try:
            agreement = cls._load(agreement_id)
            ensure_can_view(agreement, caller)
        except BaseApplicationError as e:
            return cls.handle_exception(
                e,
                "get_agreement rejected",
                log_level=logging.WARNING,
                extra={"agreement_id": str(agreement_id), "user_id": caller.user_id},
            )
        return ServiceResult.success(
            LifecycleResult(agreement=AgreementAggregator.snapshot(agreement))
        )

    @staticmethod
    def _load(agreement_id: Any) -> Agreement:
        agreement = None
        try:
            agreement = Agreement.objects.filter(pk=agreement_id).first()
        except (ValueError, DjangoValidationError):
            pass
        if agreement is None:
            raise NotFound(
                f"Agreement {agreement_id} not found",
                details={"agreement_id": str(agreement_id)},
            )
        return agreement

    @classmethod
    def list_agreements(
        cls,
        caller: CallerIdentity,
        state: str | None = None,
    ) -> ServiceResult[list[AgreementSnapshot]]:
        """
        Agreements where the caller is owner or counterparty, newest first.

        Args:
            caller: Authenticated caller
            state: Optional AgreementState filter

        Failures: VALIDATION_ERROR (unknown state)
        """
        queryset = Agreement.objects.for_party(caller.user_id)
        if state:
            if state not in AgreementState.values:
                return cls.handle_exception(
                    ValidationError(
                        f"Unknown agreement state: {state!r}",
                        details={"state": state, "allowed": list(AgreementState.values)},
                    ),
                    "list_agreements rejected",
                    log_level=logging.WARNING,
                    extra={"user_id": caller.user_id},
                )
            queryset = queryset.filter(state=state)

        snapshots = [
            AgreementAggregator.snapshot(agreement)
            for agreement in queryset.prefetch_related("milestones").order_by("-created_at")
        ]
        return ServiceResult.success(snapshots)

    @classmethod
    def ledger_for(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
    ) -> ServiceResult[list[EscrowEntry]]:
        """
        Audit trail: every escrow entry of the agreement in order.

        Failures: NOT_FOUND, FORBIDDEN
        """
        try:
            agreement = cls._load(agreement_id)
            ensure_can_view(agreement, caller)
        except BaseApplicationError as e:
            return cls.handle_exception(
                e,
                "ledger_for rejected",
                log_level=logging.WARNING,
                extra={"agreement_id": str(agreement_id), "user_id": caller.user_id},
            )
        return ServiceResult.success(list(escrow_ledger.entries_for(agreement.id)))

    # ==========================================================================
    # Draft editing
    # ==========================================================================

    @classmethod
    def create_agreement(
        cls,
        caller: CallerIdentity,
        params: CreateAgreementParams,
    ) -> ServiceResult[LifecycleResult]:
        """
        Create a draft agreement owned by the caller.

        Milestones come from params, or from the agreement type's template
        split by percent when params has none. A missing total is derived
        from the milestone sum; a given total must match it.

        Failures: INVALID_AGREEMENT, INVALID_AMOUNT
        """
        log_extra = {"operation": "create_agreement", "user_id": caller.user_id}
        try:
            with cls.atomic():
                agreement, events = cls._create(caller, params)
                snapshot = AgreementAggregator.snapshot(agreement)
                dispatch_on_commit(events)
        except BaseApplicationError as e:
            return cls.handle_exception(
                e, "create_agreement rejected", log_level=logging.WARNING, extra=log_extra
            )

        cls.get_logger().info(
            "create_agreement accepted",
            extra={
                **log_extra,
                "agreement_id": snapshot.id,
                "agreement_type": snapshot.agreement_type,
                "total_minor": snapshot.total_value.amount_minor,
                "milestone_count": snapshot.milestone_count,
            },
        )
        return ServiceResult.success(LifecycleResult(agreement=snapshot, events=events))

    @classmethod
    def _create(
        cls,
        caller: CallerIdentity,
        params: CreateAgreementParams,
    ) -> tuple[Agreement, list[DomainEvent]]:
        try:
            agreement_type = AgreementType(params.agreement_type)
        except ValueError:
            raise InvalidAgreement([f"unknown agreement type {params.agreement_type!r}"])
        template = get_template(agreement_type)
        currency = normalize_currency(params.currency or settings.ESCROW_DEFAULT_CURRENCY)

        violations: list[str] = []
        if not (params.title or "").strip():
            violations.append("title is required")
        if params.counterparty_id and params.counterparty_id == caller.user_id:
            violations.append("counterparty must differ from owner")

        total = None
        if params.total_value is not None:
            total = cls._parse_amount(params.total_value, currency)

        today = timezone.localdate()
        rows: list[dict[str, Any]] = []
        if params.milestones:
            for item in params.milestones:
                if not (item.title or "").strip():
                    violations.append(f"milestone {len(rows) + 1} title is required")
                rows.append(
                    {
                        "title": item.title,
                        "description": item.description,
                        "amount": cls._parse_amount(item.amount, currency),
                        "due_date": item.due_date,
                        "deliverables": list(item.deliverables),
                    }
                )
        elif template.default_milestones:
            if total is None:
                violations.append("total_value is required when no milestones are given")
            else:
                shares = total.split_by_percents(
                    [m.percent for m in template.default_milestones]
                )
                for default, share in zip(template.default_milestones, shares):
                    due_date = None
                    if default.due_days_from_start is not None:
                        due_date = today + timedelta(days=default.due_days_from_start)
                    rows.append(
                        {
                            "title": default.title,
                            "description": default.description,
                            "amount": share,
                            "due_date": due_date,
                            "deliverables": [],
                        }
                    )

        cls._ensure_milestone_capacity(len(rows))

        milestone_sum = ensure_storable(
            Money(sum(row["amount"].amount_minor for row in rows), currency)
        )
        if total is None:
            total = milestone_sum
        elif rows and milestone_sum != total:
            violations.append(
                f"milestone amounts sum to {milestone_sum}, expected {total}"
            )

        if violations:
            raise InvalidAgreement(violations)

        agreement = Agreement.objects.create(
            agreement_type=agreement_type,
            title=params.title.strip(),
            description=params.description or "",
            owner_id=caller.user_id,
            counterparty_id=params.counterparty_id or None,
            total_value_minor=total.amount_minor,
            currency=currency,
            requires_sequential_release=(
                template.requires_sequential_release
                if params.requires_sequential_release is None
                else params.requires_sequential_release
            ),
            manual_release=(
                template.manual_release
                if params.manual_release is None
                else params.manual_release
            ),
            metadata=dict(params.metadata or {}),
        )
        for sequence, row in enumerate(rows, start=1):
            Milestone.objects.create(
                agreement=agreement,
                sequence=sequence,
                title=row["title"].strip(),
                description=row["description"] or "",
                amount_due_minor=row["amount"].amount_minor,
                currency=currency,
                due_date=row["due_date"],
                deliverables=row["deliverables"],
            )

        events = [
            make_event(
                EventType.AGREEMENT_CREATED,
                agreement.id,
                agreement_type=agreement.agreement_type,
                owner_id=agreement.owner_id,
                counterparty_id=agreement.counterparty_id,
                total_minor=agreement.total_value_minor,
                currency=currency,
            )
        ]
        return agreement, events

    @classmethod
    def update_agreement(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        params: UpdateAgreementParams,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Edit a draft agreement. Fields left as None are unchanged.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION,
        INVALID_AGREEMENT, INVALID_AMOUNT
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_owner(agreement, caller, "edit the agreement")
            cls._ensure_draft(agreement, "edit the agreement")

            changed: list[str] = []
            if params.title is not None:
                if not params.title.strip():
                    raise InvalidAgreement(["title is required"])
                agreement.title = params.title.strip()
                changed.append("title")
            if params.description is not None:
                agreement.description = params.description
                changed.append("description")
            if params.counterparty_id is not None:
                if params.counterparty_id == agreement.owner_id:
                    raise InvalidAgreement(["counterparty must differ from owner"])
                agreement.counterparty_id = params.counterparty_id or None
                changed.append("counterparty_id")
            if params.total_value is not None:
                total = cls._parse_amount(params.total_value, agreement.currency)
                agreement.total_value_minor = total.amount_minor
                changed.append("total_value")
            if params.requires_sequential_release is not None:
                agreement.requires_sequential_release = params.requires_sequential_release
                changed.append("requires_sequential_release")
            if params.manual_release is not None:
                agreement.manual_release = params.manual_release
                changed.append("manual_release")
            if params.metadata is not None:
                agreement.metadata = dict(params.metadata)
                changed.append("metadata")

            return [make_event(EventType.AGREEMENT_UPDATED, agreement.id, fields=changed)]

        return cls._execute(
            "update_agreement", caller, agreement_id, handler, expected_version
        )

    @classmethod
    def add_milestone(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        params: MilestoneParams,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Add a milestone at the end of the sequence.

        In draft the total is left alone and re-validated on send. Once
        active the milestone must have a positive amount and the total
        grows by that amount.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION,
        INVALID_AGREEMENT, INVALID_AMOUNT
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_owner(agreement, caller, "add a milestone")
            if agreement.state not in (AgreementState.DRAFT, AgreementState.ACTIVE):
                raise InvalidTransition(
                    f"Cannot add a milestone once the agreement is '{agreement.state}'",
                    details={
                        "agreement_id": str(agreement.id),
                        "current_state": agreement.state,
                        "transition": "add_milestone",
                    },
                )
            if not (params.title or "").strip():
                raise InvalidAgreement(["milestone title is required"])
            cls._ensure_milestone_capacity(len(milestones) + 1)

            amount = cls._parse_amount(params.amount, agreement.currency)
            is_active = agreement.state == AgreementState.ACTIVE
            if is_active and amount.amount_minor <= 0:
                raise InvalidAgreement(["an appended milestone must have a positive amount"])

            sequence = max((m.sequence for m in milestones), default=0) + 1
            milestone = Milestone.objects.create(
                agreement=agreement,
                sequence=sequence,
                title=params.title.strip(),
                description=params.description or "",
                amount_due_minor=amount.amount_minor,
                currency=agreement.currency,
                due_date=params.due_date,
                deliverables=list(params.deliverables),
            )
            if is_active:
                grown = ensure_storable(agreement.total_value + amount)
                agreement.total_value_minor = grown.amount_minor

            return [
                make_event(
                    EventType.MILESTONE_ADDED,
                    agreement.id,
                    milestone.id,
                    sequence=sequence,
                    amount_minor=amount.amount_minor,
                    currency=agreement.currency,
                    total_minor=agreement.total_value_minor,
                )
            ]

        return cls._execute("add_milestone", caller, agreement_id, handler, expected_version)

    @classmethod
    def update_milestone(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        milestone_id: Any,
        params: UpdateMilestoneParams,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Edit a milestone of a draft agreement.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION,
        INVALID_AGREEMENT, INVALID_AMOUNT
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_owner(agreement, caller, "edit a milestone")
            cls._ensure_draft(agreement, "edit a milestone")
            milestone = cls._find_milestone(milestones, milestone_id)

            changed: list[str] = []
            if params.title is not None:
                if not params.title.strip():
                    raise InvalidAgreement(["milestone title is required"])
                milestone.title = params.title.strip()
                changed.append("title")
            if params.description is not None:
                milestone.description = params.description
                changed.append("description")
            if params.amount is not None:
                amount = cls._parse_amount(params.amount, milestone.currency)
                milestone.amount_due_minor = amount.amount_minor
                changed.append("amount")
            if params.due_date is not None:
                milestone.due_date = params.due_date
                changed.append("due_date")
            if params.deliverables is not None:
                milestone.deliverables = list(params.deliverables)
                changed.append("deliverables")
            milestone.save()

            return [
                make_event(
                    EventType.MILESTONE_UPDATED,
                    agreement.id,
                    milestone.id,
                    fields=changed,
                )
            ]

        return cls._execute(
            "update_milestone",
            caller,
            agreement_id,
            handler,
            expected_version,
            milestone_id=milestone_id,
        )

    @classmethod
    def remove_milestone(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        milestone_id: Any,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Remove a milestone from a draft agreement and close the sequence gap.

        Milestones are never removed once the agreement is active.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_owner(agreement, caller, "remove a milestone")
            cls._ensure_draft(agreement, "remove a milestone")
            milestone = cls._find_milestone(milestones, milestone_id)

            removed_sequence = milestone.sequence
            removed_id = milestone.id
            milestone.delete()
            # Ascending order keeps (agreement, sequence) unique at every step
            for later in sorted(milestones, key=lambda m: m.sequence):
                if later.sequence > removed_sequence:
                    later.sequence -= 1
                    later.save(update_fields=["sequence", "updated_at"])

            return [
                make_event(
                    EventType.MILESTONE_REMOVED,
                    agreement.id,
                    removed_id,
                    sequence=removed_sequence,
                )
            ]

        return cls._execute(
            "remove_milestone",
            caller,
            agreement_id,
            handler,
            expected_version,
            milestone_id=milestone_id,
        )

    # ==========================================================================
    # Agreement transitions
    # ==========================================================================

    @classmethod
    def send(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Activate a draft agreement (draft -> active).

        Guard: at least one milestone, every amount positive and in the
        agreement currency, amounts sum to the total, counterparty resolved
        and different from the owner.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION,
        INVALID_AGREEMENT
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_owner(agreement, caller, "send the agreement")
            cls._ensure_can(agreement, "send")
            AgreementAggregator.validate_for_send(agreement, milestones)
            cls._apply(agreement, "send")
            return [
                make_event(
                    EventType.AGREEMENT_SENT,
                    agreement.id,
                    counterparty_id=agreement.counterparty_id,
                    total_minor=agreement.total_value_minor,
                    currency=agreement.currency,
                )
            ]

        return cls._execute("send", caller, agreement_id, handler, expected_version)

    @classmethod
    def cancel(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        reason: str = "",
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Cancel a draft or active agreement.

        Every funded milestone is refunded first. Submitted, approved and
        disputed milestones hold escrow that refund cannot reach, so cancel
        is refused while any exists.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_owner(agreement, caller, "cancel the agreement")
            cls._ensure_can(agreement, "cancel")

            in_flight = [m for m in milestones if m.state in MILESTONE_IN_FLIGHT_STATES]
            if in_flight:
                raise InvalidTransition(
                    "Cannot cancel while milestones are submitted, approved or disputed",
                    details={
                        "agreement_id": str(agreement.id),
                        "current_state": agreement.state,
                        "transition": "cancel",
                        "blocking_milestone_ids": [str(m.id) for m in in_flight],
                    },
                )

            events: list[DomainEvent] = []
            refunded_ids: list[str] = []
            for milestone in milestones:
                if milestone.state == MilestoneState.FUNDED:
                    events.append(cls._refund(agreement, milestone, caller.user_id, reason))
                    refunded_ids.append(str(milestone.id))

            cls._apply(agreement, "cancel")
            events.append(
                make_event(
                    EventType.AGREEMENT_CANCELLED,
                    agreement.id,
                    reason=reason,
                    refunded_milestone_ids=refunded_ids,
                )
            )
            return events

        return cls._execute("cancel", caller, agreement_id, handler, expected_version)

    @classmethod
    def delete_agreement(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Delete a draft agreement and its milestones.

        Only drafts can be deleted; they never hold escrow, so nothing is
        lost from the ledger. Anything sent must be cancelled instead. The
        result carries the snapshot taken just before deletion.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION
        """
        log_extra = {
            "operation": "delete_agreement",
            "agreement_id": str(agreement_id),
            "user_id": caller.user_id,
        }
        try:
            with cls.atomic():
                agreement = lock_agreement(agreement_id, expected_version)
                ensure_owner(agreement, caller, "delete the agreement")
                cls._ensure_draft(agreement, "delete the agreement")

                snapshot = AgreementAggregator.snapshot(agreement)
                events = [
                    make_event(
                        EventType.AGREEMENT_DELETED,
                        agreement.id,
                        milestone_count=snapshot.milestone_count,
                    )
                ]
                agreement.milestones.all().delete()
                agreement.delete()
                dispatch_on_commit(events)
        except BaseApplicationError as e:
            return cls.handle_exception(
                e, "delete_agreement rejected", log_level=logging.WARNING, extra=log_extra
            )

        cls.get_logger().info("delete_agreement accepted", extra=log_extra)
        return ServiceResult.success(LifecycleResult(agreement=snapshot, events=events))

    # ==========================================================================
    # Milestone transitions
    # ==========================================================================

    @classmethod
    def fund(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        milestone_id: Any,
        amount: Money | str | int | Decimal,
        currency: str | None = None,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Commit escrow for a milestone (pending -> funded).

        The amount must equal the milestone amount due exactly.

        Args:
            amount: Money, or decimal string in major units
            currency: Currency of a string amount; defaults to the milestone's

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION,
        INVALID_AMOUNT, CURRENCY_MISMATCH, AMOUNT_MISMATCH
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_owner(agreement, caller, "fund a milestone")
            cls._ensure_active(agreement, "fund a milestone")
            milestone = cls._find_milestone(milestones, milestone_id)
            cls._ensure_can(milestone, "fund")

            received = cls._parse_amount(amount, currency or milestone.currency)
            if received.compare(milestone.amount_due) != 0:
                raise AmountMismatch(
                    milestone.id, expected=milestone.amount_due, received=received
                )

            escrow_ledger.record_entry(
                RecordEntryParams(
                    agreement_id=agreement.id,
                    milestone_id=milestone.id,
                    kind=EntryKind.FUND,
                    amount_minor=received.amount_minor,
                    currency=received.currency,
                    actor_id=caller.user_id,
                    idempotency_key=idempotency_key_for(EntryKind.FUND, milestone.id),
                )
            )
            cls._apply(milestone, "fund")
            milestone.save()
            return [
                make_event(
                    EventType.MILESTONE_FUNDED,
                    agreement.id,
                    milestone.id,
                    amount_minor=received.amount_minor,
                    currency=received.currency,
                )
            ]

        return cls._execute(
            "fund", caller, agreement_id, handler, expected_version, milestone_id=milestone_id
        )

    @classmethod
    def submit(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        milestone_id: Any,
        note: str = "",
        deliverables: list[str] | None = None,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Counterparty marks the work done (funded -> submitted).

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_counterparty(agreement, caller, "submit a milestone")
            cls._ensure_active(agreement, "submit a milestone")
            milestone = cls._find_milestone(milestones, milestone_id)
            cls._apply(milestone, "submit")
            if deliverables is not None:
                milestone.deliverables = list(deliverables)
            milestone.save()
            return [
                make_event(
                    EventType.MILESTONE_SUBMITTED,
                    agreement.id,
                    milestone.id,
                    note=note,
                    deliverables=list(milestone.deliverables or []),
                )
            ]

        return cls._execute(
            "submit", caller, agreement_id, handler, expected_version, milestone_id=milestone_id
        )

    @classmethod
    def approve(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        milestone_id: Any,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Accept submitted work (submitted -> approved), or resolve a dispute
        in the counterparty's favour (disputed -> approved, arbiter only).

        Unless the agreement is manual-release, approval chains into
        release. With sequential release the chain waits until every
        earlier milestone is settled; it then runs automatically.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            milestone = cls._find_milestone(milestones, milestone_id)
            arbitration = milestone.state == MilestoneState.DISPUTED
            if arbitration:
                ensure_arbiter(agreement, caller, "resolve a disputed milestone")
            else:
                ensure_counterparty(agreement, caller, "approve a milestone")
            cls._ensure_active(agreement, "approve a milestone")
            cls._apply(milestone, "approve")
            milestone.save()

            events = [
                make_event(
                    EventType.MILESTONE_APPROVED,
                    agreement.id,
                    milestone.id,
                    arbitration=arbitration,
                )
            ]
            events.extend(cls._settle_follow_ups(agreement, milestones, caller.user_id))
            return events

        return cls._execute(
            "approve", caller, agreement_id, handler, expected_version, milestone_id=milestone_id
        )

    @classmethod
    def release(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        milestone_id: Any,
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Pay an approved milestone out of escrow (approved -> released).

        The ledger is checked before the state guard: a milestone with a
        release entry always fails with ALREADY_RELEASED. With sequential
        release, releasing ahead of an unsettled earlier milestone fails
        with INVALID_TRANSITION.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, ALREADY_RELEASED,
        INVALID_TRANSITION
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_owner(agreement, caller, "release a milestone")
            milestone = cls._find_milestone(milestones, milestone_id)
            if escrow_ledger.has_entry(milestone.id, EntryKind.RELEASE):
                raise AlreadyReleased(milestone.id)
            cls._ensure_active(agreement, "release a milestone")
            cls._ensure_can(milestone, "release")
            if agreement.requires_sequential_release:
                blocking = AgreementAggregator.unsettled_predecessors(milestones, milestone)
                if blocking:
                    raise InvalidTransition(
                        "Earlier milestones must be released or refunded first",
                        details={
                            "milestone_id": str(milestone.id),
                            "current_state": milestone.state,
                            "transition": "release",
                            "blocking_milestone_ids": [str(m.id) for m in blocking],
                        },
                    )

            events = [cls._release(agreement, milestone, caller.user_id)]
            events.extend(cls._settle_follow_ups(agreement, milestones, caller.user_id))
            return events

        return cls._execute(
            "release", caller, agreement_id, handler, expected_version, milestone_id=milestone_id
        )

    @classmethod
    def dispute(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        milestone_id: Any,
        reason: str = "",
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Freeze a submitted or approved milestone pending arbitration.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_counterparty(agreement, caller, "dispute a milestone")
            cls._ensure_active(agreement, "dispute a milestone")
            milestone = cls._find_milestone(milestones, milestone_id)
            cls._apply(milestone, "dispute")
            milestone.save()
            return [
                make_event(
                    EventType.MILESTONE_DISPUTED,
                    agreement.id,
                    milestone.id,
                    reason=reason,
                )
            ]

        return cls._execute(
            "dispute", caller, agreement_id, handler, expected_version, milestone_id=milestone_id
        )

    @classmethod
    def refund(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        milestone_id: Any,
        reason: str = "",
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Return a milestone's escrow to the owner (funded/disputed -> refunded).

        The owner refunds a funded milestone; an arbiter refunds a disputed one.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_TRANSITION
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            milestone = cls._find_milestone(milestones, milestone_id)
            if milestone.state == MilestoneState.DISPUTED:
                ensure_arbiter(agreement, caller, "refund a disputed milestone")
            else:
                ensure_owner(agreement, caller, "refund a milestone")
            cls._ensure_active(agreement, "refund a milestone")
            events = [cls._refund(agreement, milestone, caller.user_id, reason)]
            events.extend(cls._settle_follow_ups(agreement, milestones, caller.user_id))
            return events

        return cls._execute(
            "refund", caller, agreement_id, handler, expected_version, milestone_id=milestone_id
        )

    # ==========================================================================
    # Ledger corrections
    # ==========================================================================

    @classmethod
    def adjust_entry(
        cls,
        caller: CallerIdentity,
        agreement_id: Any,
        entry_id: Any,
        amount: Money | str | int | Decimal,
        reason: str = "",
        expected_version: int | None = None,
    ) -> ServiceResult[LifecycleResult]:
        """
        Record a signed correction of an earlier ledger entry (arbiter only).

        The corrected entry is never modified; the adjustment is a new
        entry referencing it.

        Failures: NOT_FOUND, FORBIDDEN, STALE_RECORD, INVALID_AMOUNT,
        CURRENCY_MISMATCH
        """

        def handler(agreement: Agreement, milestones: list[Milestone]) -> list[DomainEvent]:
            ensure_arbiter(agreement, caller, "adjust a ledger entry")
            original = escrow_ledger.get_entry(entry_id)
            if original.agreement_id != agreement.id:
                raise NotFound(
                    f"Escrow entry {entry_id} not found",
                    details={"entry_id": str(entry_id)},
                )
            correction = cls._parse_signed_amount(amount, original.currency)
            entry = escrow_ledger.adjust(original.id, correction, caller.user_id, reason)
            return [
                make_event(
                    EventType.LEDGER_ADJUSTED,
                    agreement.id,
                    original.milestone_id,
                    entry_id=str(entry.id),
                    corrects_entry_id=str(original.id),
                    amount_minor=correction.amount_minor,
                    currency=correction.currency,
                    reason=reason,
                )
            ]

        return cls._execute(
            "adjust_entry", caller, agreement_id, handler, expected_version
        )


__all__ = [
    "LifecycleService",
]
