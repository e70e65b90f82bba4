"""
Initial billing schema: plan catalogue, usage charges, subscriptions,
invoices, credit notes and the domain event outbox.
"""

import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

INTERVAL_CHOICES = [
    ("HOURLY", "Hourly"),
    ("DAILY", "Daily"),
    ("WEEKLY", "Weekly"),
    ("MONTHLY", "Monthly"),
    ("QUARTERLY", "Quarterly"),
    ("YEARLY", "Yearly"),
]
TIMING_CHOICES = [("IN_ADVANCE", "In advance"), ("IN_ARREARS", "In arrears")]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("customers", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="BillableMetric",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "code",
                    models.CharField(
                        help_text="Stable identifier used by event producers", max_length=100, unique=True
                    ),
                ),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                (
                    "aggregation_type",
                    models.CharField(
                        choices=[
                            ("COUNT", "Count"),
                            ("SUM", "Sum"),
                            ("MAX", "Max"),
                            ("UNIQUE_COUNT", "Unique count"),
                            ("LATEST", "Latest"),
                            ("WEIGHTED_SUM", "Weighted sum"),
                        ],
                        default="COUNT",
                        max_length=20,
                    ),
                ),
                (
                    "field_name",
                    models.CharField(
                        blank=True, help_text="Event property aggregated by SUM/MAX/UNIQUE_COUNT/LATEST", max_length=100
                    ),
                ),
                (
                    "filter_keys",
                    models.JSONField(blank=True, default=list, help_text="Event properties charges may filter on"),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Billable Metric",
                "verbose_name_plural": "Billable Metrics",
                "db_table": "billing_billable_metrics",
                "ordering": ("code",),
            },
        ),
        migrations.CreateModel(
            name="DocumentSequence",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("scope", models.CharField(default="default", max_length=50, unique=True)),
                ("last_value", models.BigIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Document Sequence",
                "verbose_name_plural": "Document Sequences",
                "db_table": "billing_document_sequences",
            },
        ),
        migrations.CreateModel(
            name="Plan",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=100, unique=True)),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                ("interval", models.CharField(choices=INTERVAL_CHOICES, default="MONTHLY", max_length=20)),
                ("billing_timing", models.CharField(choices=TIMING_CHOICES, default="IN_ADVANCE", max_length=20)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Plan",
                "verbose_name_plural": "Plans",
                "db_table": "billing_plans",
                "ordering": ("name",),
            },
        ),
        migrations.CreateModel(
            name="PlanPrice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("currency", models.CharField(help_text="ISO 4217 code, upper-case", max_length=3)),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Amount per billing period in major currency units",
                        max_digits=14,
                        validators=[django.core.validators.MinValueValidator(Decimal("0"))],
                    ),
                ),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="prices", to="billing.plan"
                    ),
                ),
            ],
            options={
                "verbose_name": "Plan Price",
                "verbose_name_plural": "Plan Prices",
                "db_table": "billing_plan_prices",
                "constraints": [
                    models.UniqueConstraint(fields=("plan", "currency"), name="plan_price_unique_currency"),
                    models.CheckConstraint(condition=models.Q(("amount__gte", 0)), name="plan_price_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Charge",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "charge_model",
                    models.CharField(
                        choices=[
                            ("STANDARD", "Standard"),
                            ("GRADUATED", "Graduated"),
                            ("VOLUME", "Volume"),
                            ("PACKAGE", "Package"),
                            ("PERCENTAGE", "Percentage"),
                        ],
                        max_length=20,
                    ),
                ),
                ("billing_timing", models.CharField(choices=TIMING_CHOICES, default="IN_ARREARS", max_length=20)),
                ("invoice_display_name", models.CharField(blank=True, max_length=255)),
                (
                    "min_amount_cents",
                    models.BigIntegerField(
                        blank=True,
                        help_text="Minimum amount billed for this charge per period, in cents",
                        null=True,
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                ("prorated", models.BooleanField(default=False)),
                ("properties", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "billable_metric",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="charges",
                        to="billing.billablemetric",
                    ),
                ),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="charges", to="billing.plan"
                    ),
                ),
            ],
            options={
                "verbose_name": "Charge",
                "verbose_name_plural": "Charges",
                "db_table": "billing_charges",
                "ordering": ("created_at",),
                "constraints": [
                    models.UniqueConstraint(fields=("plan", "billable_metric"), name="charge_unique_plan_metric"),
                    models.CheckConstraint(
                        condition=models.Q(("min_amount_cents__isnull", True), ("min_amount_cents__gte", 0), _connector="OR"),
                        name="charge_min_amount_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ChargeFilter",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("key", models.CharField(max_length=100)),
                ("values", models.JSONField(default=list)),
                ("properties", models.JSONField(blank=True, default=dict)),
                ("invoice_display_name", models.CharField(blank=True, max_length=255)),
                (
                    "charge",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="filters", to="billing.charge"
                    ),
                ),
            ],
            options={
                "verbose_name": "Charge Filter",
                "verbose_name_plural": "Charge Filters",
                "db_table": "billing_charge_filters",
            },
        ),
        migrations.CreateModel(
            name="GraduatedRange",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "from_value",
                    models.DecimalField(
                        decimal_places=6,
                        max_digits=20,
                        validators=[django.core.validators.MinValueValidator(Decimal("0"))],
                    ),
                ),
                (
                    "to_value",
                    models.DecimalField(
                        blank=True,
                        decimal_places=6,
                        help_text="Inclusive upper bound, empty for the unbounded last range",
                        max_digits=20,
                        null=True,
                    ),
                ),
                ("per_unit_amount", models.DecimalField(decimal_places=6, default=Decimal("0"), max_digits=20)),
                ("flat_amount", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=14)),
                ("order", models.PositiveIntegerField(default=0)),
                (
                    "charge",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="graduated_ranges",
                        to="billing.charge",
                    ),
                ),
            ],
            options={
                "verbose_name": "Graduated Range",
                "verbose_name_plural": "Graduated Ranges",
                "db_table": "billing_graduated_ranges",
                "ordering": ("charge", "order"),
                "constraints": [
                    models.UniqueConstraint(fields=("charge", "order"), name="graduated_range_unique_order"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("currency", models.CharField(help_text="Fixed at creation, upper-case ISO 4217", max_length=3)),
                ("billing_timing", models.CharField(choices=TIMING_CHOICES, default="IN_ADVANCE", max_length=20)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("TRIALING", "Trialing"),
                            ("ACTIVE", "Active"),
                            ("PAUSED", "Paused"),
                            ("CANCELED", "Canceled"),
                        ],
                        db_index=True,
                        default="ACTIVE",
                        max_length=20,
                    ),
                ),
                ("current_period_start", models.DateTimeField()),
                ("current_period_end", models.DateTimeField(db_index=True)),
                ("trial_start", models.DateTimeField(blank=True, null=True)),
                ("trial_end", models.DateTimeField(blank=True, null=True)),
                (
                    "cancel_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Scheduled cancellation, normally the end of the current period",
                        null=True,
                    ),
                ),
                ("canceled_at", models.DateTimeField(blank=True, null=True)),
                ("paused_at", models.DateTimeField(blank=True, null=True)),
                ("pending_plan_effective_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="customers.customer",
                    ),
                ),
                (
                    "pending_plan",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="scheduled_subscriptions",
                        to="billing.plan",
                    ),
                ),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="subscriptions", to="billing.plan"
                    ),
                ),
                (
                    "previous_plan",
                    models.ForeignKey(
                        blank=True,
                        help_text="Plan in force before the last plan change",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="previous_subscriptions",
                        to="billing.plan",
                    ),
                ),
            ],
            options={
                "verbose_name": "Subscription",
                "verbose_name_plural": "Subscriptions",
                "db_table": "billing_subscriptions",
                "ordering": ("-created_at",),
                "indexes": [models.Index(fields=["customer", "status"], name="subscription_customer_status")],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("current_period_end__gt", models.F("current_period_start"))),
                        name="subscription_period_ordered",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("trial_start__isnull", True), ("trial_end__isnull", True)),
                            models.Q(("trial_start__isnull", False), ("trial_end__isnull", False)),
                            _connector="OR",
                        ),
                        name="subscription_trial_bounds_paired",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("pending_plan__isnull", True), ("pending_plan_effective_at__isnull", True)),
                            models.Q(("pending_plan__isnull", False), ("pending_plan_effective_at__isnull", False)),
                            _connector="OR",
                        ),
                        name="subscription_pending_change_paired",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("number", models.CharField(blank=True, max_length=50, unique=True)),
                ("amount", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=14)),
                ("currency", models.CharField(max_length=3)),
                (
                    "status",
                    models.CharField(
                        choices=[("DRAFT", "Draft"), ("FINALIZED", "Finalized"), ("PAID", "Paid"), ("VOID", "Void")],
                        default="DRAFT",
                        max_length=20,
                    ),
                ),
                ("issued_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.RESTRICT,
                        related_name="invoices",
                        to="customers.customer",
                    ),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="billing.subscription",
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice",
                "verbose_name_plural": "Invoices",
                "db_table": "billing_invoices",
                "ordering": ("-created_at",),
                "indexes": [models.Index(fields=["subscription", "issued_at"], name="invoice_subscription_issued")],
            },
        ),
        migrations.CreateModel(
            name="CreditNote",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("number", models.CharField(blank=True, max_length=50, unique=True)),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=14,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.01"))],
                    ),
                ),
                ("currency", models.CharField(max_length=3)),
                (
                    "reason",
                    models.CharField(
                        choices=[
                            ("ORDER_CHANGE", "Order change"),
                            ("DUPLICATE", "Duplicate"),
                            ("PRODUCT_UNSATISFACTORY", "Product unsatisfactory"),
                            ("OTHER", "Other"),
                        ],
                        default="ORDER_CHANGE",
                        max_length=30,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("DRAFT", "Draft"), ("FINALIZED", "Finalized"), ("VOIDED", "Voided")],
                        default="DRAFT",
                        max_length=20,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("issued_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.RESTRICT,
                        related_name="credit_notes",
                        to="customers.customer",
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credit_notes",
                        to="billing.invoice",
                    ),
                ),
            ],
            options={
                "verbose_name": "Credit Note",
                "verbose_name_plural": "Credit Notes",
                "db_table": "billing_credit_notes",
                "ordering": ("-created_at",),
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="credit_note_amount_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="DomainEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                ("customer_id", models.UUIDField(blank=True, null=True)),
                ("payload", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[("PENDING", "Pending"), ("DISPATCHED", "Dispatched"), ("FAILED", "Failed")],
                        default="PENDING",
                        max_length=20,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("dispatched_at", models.DateTimeField(blank=True, null=True)),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="domain_events",
                        to="billing.subscription",
                    ),
                ),
            ],
            options={
                "verbose_name": "Domain Event",
                "verbose_name_plural": "Domain Events",
                "db_table": "billing_domain_events",
                "ordering": ("created_at", "id"),
                "indexes": [models.Index(fields=["status", "created_at"], name="domain_event_status_created")],
            },
        ),
    ]
