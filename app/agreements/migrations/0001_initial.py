import uuid

import django.db.models.deletion
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Agreement",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "owner_id",
                    models.CharField(
                        db_index=True,
                        help_text="User ID (from the identity provider) of the agreement owner",
                        max_length=128,
                    ),
                ),
                (
                    "counterparty_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="User ID of the counterparty; must be resolved before sending",
                        max_length=128,
                        null=True,
                    ),
                ),
                (
                    "agreement_type",
                    models.CharField(
                        choices=[
                            ("freelance", "Freelance"),
                            ("creative", "Creative"),
                            ("loan", "Loan"),
                            ("rent", "Rent"),
                            ("service", "Service"),
                            ("custom", "Custom"),
                        ],
                        default="custom",
                        help_text="Template type of the agreement",
                        max_length=20,
                    ),
                ),
                ("title", models.CharField(help_text="Agreement title", max_length=200)),
                (
                    "description",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Agreement description and terms summary",
                    ),
                ),
                (
                    "total_value_minor",
                    models.PositiveBigIntegerField(
                        help_text="Agreed total value in smallest currency unit (e.g., cents)"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="USD",
                        help_text="ISO 4217 currency code (upper case)",
                        max_length=3,
                    ),
                ),
                (
                    "requires_sequential_release",
                    models.BooleanField(
                        default=False,
                        help_text="Milestones must be released in sequence order",
                    ),
                ),
                (
                    "manual_release",
                    models.BooleanField(
                        default=False,
                        help_text="Approval does not release funds automatically",
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("draft", "Draft"),
                            ("active", "Active"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="draft",
                        help_text="Current state of the agreement (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "sent_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the agreement was sent and became active",
                        null=True,
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the last milestone was released",
                        null=True,
                    ),
                ),
                (
                    "cancelled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the agreement was cancelled",
                        null=True,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata (terms, payment terms, template id)",
                    ),
                ),
            ],
            options={
                "verbose_name": "Agreement",
                "verbose_name_plural": "Agreements",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["owner_id", "state"],
                        name="agreement_owner_state_idx",
                    ),
                    models.Index(
                        fields=["counterparty_id", "state"],
                        name="agreement_cpty_state_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Milestone",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("title", models.CharField(help_text="Milestone title", max_length=200)),
                (
                    "description",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="What has to be delivered",
                    ),
                ),
                (
                    "sequence",
                    models.PositiveIntegerField(
                        help_text="Display and release order within the agreement (1-based)"
                    ),
                ),
                (
                    "amount_due_minor",
                    models.BigIntegerField(
                        help_text="Amount due in smallest currency unit (e.g., cents)"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="USD",
                        help_text="ISO 4217 currency code (matches the agreement)",
                        max_length=3,
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("funded", "Funded"),
                            ("submitted", "Submitted"),
                            ("approved", "Approved"),
                            ("released", "Released"),
                            ("disputed", "Disputed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the milestone (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "due_date",
                    models.DateField(
                        blank=True,
                        help_text="Date the deliverables are due",
                        null=True,
                    ),
                ),
                (
                    "deliverables",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="List of deliverable descriptions",
                    ),
                ),
                ("funded_at", models.DateTimeField(blank=True, null=True)),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("disputed_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "agreement",
                    models.ForeignKey(
                        help_text="Agreement this milestone belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="milestones",
                        to="agreements.agreement",
                    ),
                ),
            ],
            options={
                "verbose_name": "Milestone",
                "verbose_name_plural": "Milestones",
                "ordering": ["agreement", "sequence"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("agreement", "sequence"),
                        name="unique_milestone_sequence",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount_due_minor__gte", 0)),
                        name="milestone_amount_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="EscrowEntry",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this entry was recorded",
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("fund", "Fund"),
                            ("release", "Release"),
                            ("refund", "Refund"),
                            ("adjust", "Adjust"),
                        ],
                        help_text="Category of this entry",
                        max_length=20,
                    ),
                ),
                (
                    "amount_minor",
                    models.BigIntegerField(help_text="Signed amount in smallest currency unit"),
                ),
                (
                    "currency",
                    models.CharField(
                        default="USD",
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "actor_id",
                    models.CharField(
                        help_text="User ID of the caller that caused this movement",
                        max_length=128,
                    ),
                ),
                (
                    "position",
                    models.PositiveIntegerField(help_text="Per-agreement insertion counter"),
                ),
                (
                    "payload",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON data (adjust reason, corrected entry)",
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Unique key to prevent duplicate entries",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "agreement",
                    models.ForeignKey(
                        help_text="Agreement whose escrow moved",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_entries",
                        to="agreements.agreement",
                    ),
                ),
                (
                    "milestone",
                    models.ForeignKey(
                        help_text="Milestone this movement belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_entries",
                        to="agreements.milestone",
                    ),
                ),
            ],
            options={
                "verbose_name": "Escrow entry",
                "verbose_name_plural": "Escrow entries",
                "ordering": ["created_at", "position"],
                "indexes": [
                    models.Index(
                        fields=["milestone", "kind"],
                        name="escrow_milestone_kind_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("agreement", "position"),
                        name="unique_escrow_entry_position",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("kind", "fund"), _negated=True),
                            ("amount_minor__gt", 0),
                            _connector="OR",
                        ),
                        name="escrow_fund_entry_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("kind__in", ["release", "refund"]), _negated=True),
                            ("amount_minor__lt", 0),
                            _connector="OR",
                        ),
                        name="escrow_outflow_entry_negative",
                    ),
                ],
            },
        ),
    ]
