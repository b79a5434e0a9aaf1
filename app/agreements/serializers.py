"""
Serializers for the agreements API.

Input serializers validate request bodies and hand plain values to
LifecycleService. Output serializers render the read-only snapshots and
ledger entries the service returns.

Serializer Hierarchy:
    Input:
        MilestoneInputSerializer: One milestone in a create/add request
        AgreementCreateSerializer: Create a draft agreement
        AgreementUpdateSerializer: Patch a draft agreement
        MilestoneUpdateSerializer: Patch a draft milestone
        VersionSerializer: Body of transitions that take no arguments
        ReasonSerializer: Cancel, dispute and refund
        SubmitSerializer: Submit work for a milestone
        FundSerializer: Fund a milestone
        AdjustSerializer: Arbiter correction of a ledger entry

    Output:
        MoneyField: {amount_minor, currency, display}
        MilestoneSnapshotSerializer / AgreementSnapshotSerializer
        DomainEventSerializer
        LifecycleResultSerializer: {agreement, events}
        EscrowEntrySerializer

Design Decisions:
    - Amounts travel as decimal strings in major units ("600.00") and are
      parsed by Money.parse in the service, never as floats
    - Every mutating body accepts an optional expected_version for
      optimistic concurrency
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import serializers

from agreements.ledger.models import EscrowEntry
from agreements.state_machines import AgreementType
from agreements.types import (
    CreateAgreementParams,
    MilestoneParams,
    UpdateAgreementParams,
    UpdateMilestoneParams,
)

if TYPE_CHECKING:
    from agreements.money import Money


# =============================================================================
# Fields
# =============================================================================


class MoneyField(serializers.Field):
    """Read-only rendering of a Money value."""

    def __init__(self, **kwargs):
        kwargs["read_only"] = True
        super().__init__(**kwargs)

    def to_representation(self, value: Money) -> dict:
        return {
            "amount_minor": value.amount_minor,
            "currency": value.currency,
            "display": value.format(),
        }


class AmountField(serializers.CharField):
    """Decimal amount in major units, accepted as a string or number."""

    def __init__(self, **kwargs):
        kwargs.setdefault("max_length", 32)
        kwargs.setdefault(
            "help_text", 'Amount in major units as a decimal string, e.g. "600.00"'
        )
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        if isinstance(data, float):
            # Floats lose precision; callers must send strings or integers
            self.fail("invalid")
        return super().to_internal_value(data)


class VersionedSerializer(serializers.Serializer):
    expected_version = serializers.IntegerField(
        required=False,
        min_value=1,
        help_text="Reject with STALE_RECORD unless the agreement is at this version",
    )


# =============================================================================
# Input Serializers
# =============================================================================


class MilestoneInputSerializer(serializers.Serializer):
    """One milestone in a create or add request."""

    title = serializers.CharField(max_length=200)
    amount = AmountField()
    description = serializers.CharField(required=False, allow_blank=True, default="")
    due_date = serializers.DateField(required=False, allow_null=True, default=None)
    deliverables = serializers.ListField(
        child=serializers.CharField(max_length=500),
        required=False,
        default=list,
    )

    def to_params(self, data: dict | None = None) -> MilestoneParams:
        data = self.validated_data if data is None else data
        return MilestoneParams(
            title=data["title"],
            amount=data["amount"],
            description=data.get("description", ""),
            due_date=data.get("due_date"),
            deliverables=list(data.get("deliverables") or []),
        )


class MilestoneCreateSerializer(VersionedSerializer, MilestoneInputSerializer):
    """Add a milestone to an existing agreement."""


class AgreementCreateSerializer(serializers.Serializer):
    """
    Create a draft agreement.

    Milestones are optional; when omitted, the agreement type's template
    milestones are created from total_value.
    """

    agreement_type = serializers.ChoiceField(
        choices=AgreementType.choices,
        default=AgreementType.CUSTOM,
    )
    title = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    counterparty_id = serializers.CharField(
        max_length=128, required=False, allow_null=True, default=None
    )
    total_value = AmountField(required=False, allow_null=True, default=None)
    currency = serializers.CharField(
        max_length=3, min_length=3, required=False, allow_null=True, default=None
    )
    milestones = MilestoneInputSerializer(many=True, required=False, default=list)
    requires_sequential_release = serializers.BooleanField(
        required=False, allow_null=True, default=None
    )
    manual_release = serializers.BooleanField(required=False, allow_null=True, default=None)
    metadata = serializers.JSONField(required=False, default=dict)

    def validate_metadata(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("metadata must be an object")
        return value

    def to_params(self) -> CreateAgreementParams:
        data = self.validated_data
        milestone_serializer = MilestoneInputSerializer()
        return CreateAgreementParams(
            agreement_type=data["agreement_type"],
            title=data["title"],
            description=data["description"],
            counterparty_id=data["counterparty_id"],
            total_value=data["total_value"],
            currency=data["currency"],
            milestones=[milestone_serializer.to_params(m) for m in data["milestones"]],
            requires_sequential_release=data["requires_sequential_release"],
            manual_release=data["manual_release"],
            metadata=data["metadata"],
        )


class AgreementUpdateSerializer(VersionedSerializer):
    """Patch a draft agreement. Omitted fields stay unchanged."""

    title = serializers.CharField(max_length=200, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    counterparty_id = serializers.CharField(max_length=128, required=False)
    total_value = AmountField(required=False)
    requires_sequential_release = serializers.BooleanField(required=False)
    manual_release = serializers.BooleanField(required=False)
    metadata = serializers.JSONField(required=False)

    def validate_metadata(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("metadata must be an object")
        return value

    def to_params(self) -> UpdateAgreementParams:
        data = self.validated_data
        return UpdateAgreementParams(
            title=data.get("title"),
            description=data.get("description"),
            counterparty_id=data.get("counterparty_id"),
            total_value=data.get("total_value"),
            requires_sequential_release=data.get("requires_sequential_release"),
            manual_release=data.get("manual_release"),
            metadata=data.get("metadata"),
        )


class MilestoneUpdateSerializer(VersionedSerializer):
    """Patch a draft milestone. Omitted fields stay unchanged."""

    title = serializers.CharField(max_length=200, required=False)
    amount = AmountField(required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    due_date = serializers.DateField(required=False)
    deliverables = serializers.ListField(
        child=serializers.CharField(max_length=500), required=False
    )

    def to_params(self) -> UpdateMilestoneParams:
        data = self.validated_data
        return UpdateMilestoneParams(
            title=data.get("title"),
            amount=data.get("amount"),
            description=data.get("description"),
            due_date=data.get("due_date"),
            deliverables=data.get("deliverables"),
        )


class VersionSerializer(VersionedSerializer):
    """Body of transitions that take no arguments (send, approve, release)."""


class ReasonSerializer(VersionedSerializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)


class SubmitSerializer(VersionedSerializer):
    note = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)
    deliverables = serializers.ListField(
        child=serializers.CharField(max_length=500),
        required=False,
        allow_null=True,
        default=None,
    )


class FundSerializer(VersionedSerializer):
    """Fund a milestone with exactly its amount due."""

    amount = AmountField()
    currency = serializers.CharField(
        max_length=3, min_length=3, required=False, allow_null=True, default=None
    )


class AdjustSerializer(VersionedSerializer):
    """Arbiter correction of an existing ledger entry."""

    entry_id = serializers.UUIDField()
    amount = AmountField(help_text='Signed amount in major units, e.g. "-5.00"')
    reason = serializers.CharField(max_length=2000)


# =============================================================================
# Output Serializers
# =============================================================================


class MilestoneSnapshotSerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    sequence = serializers.IntegerField(read_only=True)
    title = serializers.CharField(read_only=True)
    description = serializers.CharField(read_only=True)
    amount_due = MoneyField()
    state = serializers.CharField(read_only=True)
    escrow_balance = MoneyField()
    due_date = serializers.DateField(read_only=True)
    is_overdue = serializers.BooleanField(read_only=True)
    deliverables = serializers.ListField(child=serializers.CharField(), read_only=True)
    funded_at = serializers.DateTimeField(read_only=True)
    submitted_at = serializers.DateTimeField(read_only=True)
    approved_at = serializers.DateTimeField(read_only=True)
    released_at = serializers.DateTimeField(read_only=True)
    disputed_at = serializers.DateTimeField(read_only=True)
    refunded_at = serializers.DateTimeField(read_only=True)


class AgreementSnapshotSerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    agreement_type = serializers.CharField(read_only=True)
    title = serializers.CharField(read_only=True)
    description = serializers.CharField(read_only=True)
    owner_id = serializers.CharField(read_only=True)
    counterparty_id = serializers.CharField(read_only=True, allow_null=True)
    state = serializers.CharField(read_only=True)
    version = serializers.IntegerField(read_only=True)
    currency = serializers.CharField(read_only=True)
    total_value = MoneyField()
    released_value = MoneyField()
    escrowed_value = MoneyField()
    refunded_value = MoneyField()
    remaining_value = MoneyField()
    progress_percent = serializers.DecimalField(max_digits=6, decimal_places=2, read_only=True)
    progress_fraction = serializers.DecimalField(max_digits=6, decimal_places=4, read_only=True)
    released_count = serializers.IntegerField(read_only=True)
    milestone_count = serializers.IntegerField(read_only=True)
    requires_sequential_release = serializers.BooleanField(read_only=True)
    manual_release = serializers.BooleanField(read_only=True)
    milestones = MilestoneSnapshotSerializer(many=True, read_only=True)
    metadata = serializers.JSONField(read_only=True)
    created_at = serializers.DateTimeField(read_only=True)
    updated_at = serializers.DateTimeField(read_only=True)
    sent_at = serializers.DateTimeField(read_only=True)
    completed_at = serializers.DateTimeField(read_only=True)
    cancelled_at = serializers.DateTimeField(read_only=True)


class DomainEventSerializer(serializers.Serializer):
    type = serializers.CharField(read_only=True)
    agreement_id = serializers.CharField(read_only=True)
    milestone_id = serializers.CharField(read_only=True, allow_null=True)
    payload = serializers.JSONField(read_only=True)
    timestamp = serializers.DateTimeField(read_only=True)


class LifecycleResultSerializer(serializers.Serializer):
    """Response body of every lifecycle operation."""

    agreement = AgreementSnapshotSerializer(read_only=True)
    events = DomainEventSerializer(many=True, read_only=True)


class EscrowEntrySerializer(serializers.ModelSerializer):
    """One immutable ledger entry in the audit trail."""

    amount = MoneyField()

    class Meta:
        model = EscrowEntry
        fields = [
            "id",
            "agreement",
            "milestone",
            "position",
            "kind",
            "amount_minor",
            "currency",
            "amount",
            "actor_id",
            "idempotency_key",
            "payload",
            "created_at",
        ]
        read_only_fields = fields


class ErrorSerializer(serializers.Serializer):
    """Error body returned for rejected operations."""

    error = serializers.CharField()
    error_code = serializers.CharField()
    errors = serializers.DictField(required=False)
    details = serializers.DictField(required=False)
