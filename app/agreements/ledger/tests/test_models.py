"""
Tests for the EscrowEntry model.

Tests cover:
- Immutability (save, delete, bulk update and bulk delete are refused)
- Sign constraints per entry kind
- Uniqueness of idempotency keys and positions
- RecordEntryParams validation
"""

import uuid

import pytest
from django.db import IntegrityError, transaction

from agreements.exceptions import ImmutableEntryError
from agreements.ledger.models import EscrowEntry
from agreements.ledger.types import RecordEntryParams, idempotency_key_for
from agreements.money import Money
from agreements.state_machines import EntryKind
from agreements.tests.factories import EscrowEntryFactory


class TestEscrowEntry:
    """Tests for EscrowEntry fields and helpers."""

    def test_amount(self, fund_entry):
        assert fund_entry.amount == Money(60000, "USD")

    def test_str(self, fund_entry):
        assert str(fund_entry) == "Fund: 600.00 USD"

    def test_for_milestone_filters_entries(self, agreement, milestone, other_milestone):
        own = EscrowEntryFactory(agreement=agreement, milestone=milestone)
        EscrowEntryFactory(agreement=agreement, milestone=other_milestone)

        assert list(EscrowEntry.objects.for_milestone(milestone.id)) == [own]


class TestEscrowEntryImmutability:
    """Ledger rows are append-only."""

    def test_save_existing_entry_raises(self, fund_entry):
        fund_entry.amount_minor = 1

        with pytest.raises(ImmutableEntryError) as exc_info:
            fund_entry.save()

        assert exc_info.value.error_code == "IMMUTABLE_ENTRY"
        assert EscrowEntry.objects.get(id=fund_entry.id).amount_minor == 60000

    def test_delete_entry_raises(self, fund_entry):
        with pytest.raises(ImmutableEntryError):
            fund_entry.delete()

        assert EscrowEntry.objects.filter(id=fund_entry.id).exists()

    def test_queryset_update_raises(self, fund_entry):
        with pytest.raises(ImmutableEntryError):
            EscrowEntry.objects.filter(id=fund_entry.id).update(amount_minor=1)

    def test_queryset_delete_raises(self, fund_entry):
        with pytest.raises(ImmutableEntryError):
            EscrowEntry.objects.all().delete()


class TestEscrowEntryConstraints:
    """Database constraints on escrow entries."""

    def _create(self, agreement, milestone, **kwargs):
        fields = {
            "agreement": agreement,
            "milestone": milestone,
            "kind": EntryKind.FUND,
            "amount_minor": 60000,
            "currency": "USD",
            "actor_id": agreement.owner_id,
            "position": 1,
            "idempotency_key": f"test:{uuid.uuid4()}",
        }
        fields.update(kwargs)
        return EscrowEntry.objects.create(**fields)

    def test_fund_entry_must_be_positive(self, agreement, milestone):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                self._create(agreement, milestone, amount_minor=-100)

    @pytest.mark.parametrize("kind", [EntryKind.RELEASE, EntryKind.REFUND])
    def test_outflow_entries_must_be_negative(self, agreement, milestone, kind):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                self._create(agreement, milestone, kind=kind, amount_minor=100)

    @pytest.mark.parametrize("amount_minor", [-500, 500])
    def test_adjust_entries_take_either_sign(self, agreement, milestone, amount_minor):
        entry = self._create(
            agreement, milestone, kind=EntryKind.ADJUST, amount_minor=amount_minor
        )

        assert entry.amount_minor == amount_minor

    def test_idempotency_key_is_unique(self, agreement, milestone):
        self._create(agreement, milestone, idempotency_key="fund:dup", position=1)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                self._create(agreement, milestone, idempotency_key="fund:dup", position=2)

    def test_position_is_unique_per_agreement(self, agreement, milestone):
        self._create(agreement, milestone, position=1)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                self._create(agreement, milestone, position=1)


class TestRecordEntryParams:
    """Sign and key validation in RecordEntryParams."""

    def _params(self, **kwargs):
        fields = {
            "agreement_id": uuid.uuid4(),
            "milestone_id": uuid.uuid4(),
            "kind": EntryKind.FUND,
            "amount_minor": 100,
            "currency": "USD",
            "actor_id": "user-1",
            "idempotency_key": "fund:1",
        }
        fields.update(kwargs)
        return RecordEntryParams(**fields)

    def test_valid_params(self):
        assert self._params().amount_minor == 100

    @pytest.mark.parametrize(
        "kind,amount_minor",
        [
            (EntryKind.FUND, 0),
            (EntryKind.FUND, -100),
            (EntryKind.RELEASE, 100),
            (EntryKind.REFUND, 0),
            (EntryKind.ADJUST, 0),
        ],
    )
    def test_rejects_wrong_sign(self, kind, amount_minor):
        with pytest.raises(ValueError):
            self._params(kind=kind, amount_minor=amount_minor)

    def test_requires_idempotency_key(self):
        with pytest.raises(ValueError):
            self._params(idempotency_key="")

    def test_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            self._params(kind="bonus")

    def test_idempotency_key_for(self):
        milestone_id = uuid.uuid4()

        assert idempotency_key_for(EntryKind.RELEASE, milestone_id) == f"release:{milestone_id}"
