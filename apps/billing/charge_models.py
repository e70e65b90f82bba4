"""
Usage charge models.

A Charge prices one billable metric on one plan. Its model-specific
parameters live in ``properties`` (STANDARD, PACKAGE, PERCENTAGE) or in
ordered GraduatedRange rows (GRADUATED, VOLUME).
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any, ClassVar

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from .periods import BillingTiming
from .pricing import ChargeModel, ChargePricing, parse_pricing
from .validators import validate_financial_json, validate_min_amount_cents

logger = logging.getLogger(__name__)


class Charge(models.Model):
    """Usage-based price attached to a plan for a single metric."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    plan = models.ForeignKey("billing.Plan", on_delete=models.CASCADE, related_name="charges")
    billable_metric = models.ForeignKey(
        "billing.BillableMetric",
        on_delete=models.PROTECT,
        related_name="charges",
    )
    charge_model = models.CharField(max_length=20, choices=ChargeModel.choices)
    billing_timing = models.CharField(
        max_length=20,
        choices=BillingTiming.choices,
        default=BillingTiming.IN_ARREARS,
    )
    invoice_display_name = models.CharField(max_length=255, blank=True)
    min_amount_cents = models.BigIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(0)],
        help_text=_("Minimum amount billed for this charge per period, in cents"),
    )
    prorated = models.BooleanField(default=False)
    properties = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_charges"
        verbose_name = _("Charge")
        verbose_name_plural = _("Charges")
        ordering = ("created_at",)
        constraints: ClassVar[list] = [
            models.UniqueConstraint(fields=["plan", "billable_metric"], name="charge_unique_plan_metric"),
            models.CheckConstraint(
                condition=Q(min_amount_cents__isnull=True) | Q(min_amount_cents__gte=0),
                name="charge_min_amount_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.plan_id}:{self.billable_metric_id} ({self.charge_model})"

    def clean(self) -> None:
        super().clean()
        validate_min_amount_cents(self.min_amount_cents)
        validate_financial_json(self.properties, "properties")

    def save(self, *args: Any, **kwargs: Any) -> None:
        self.clean()
        super().save(*args, **kwargs)

    def get_pricing(self) -> ChargePricing:
        """Typed pricing for this charge; ranges are read in their stored order."""
        return parse_pricing(self.charge_model, self.properties, self.graduated_ranges.all())


class GraduatedRange(models.Model):
    """One tier of a GRADUATED or VOLUME charge. Bounds are inclusive."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    charge = models.ForeignKey(Charge, on_delete=models.CASCADE, related_name="graduated_ranges")
    from_value = models.DecimalField(max_digits=20, decimal_places=6, validators=[MinValueValidator(Decimal("0"))])
    to_value = models.DecimalField(
        max_digits=20,
        decimal_places=6,
        null=True,
        blank=True,
        help_text=_("Inclusive upper bound, empty for the unbounded last range"),
    )
    per_unit_amount = models.DecimalField(max_digits=20, decimal_places=6, default=Decimal("0"))
    flat_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))
    order = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "billing_graduated_ranges"
        verbose_name = _("Graduated Range")
        verbose_name_plural = _("Graduated Ranges")
        ordering = ("charge", "order")
        constraints: ClassVar[list] = [
            models.UniqueConstraint(fields=["charge", "order"], name="graduated_range_unique_order"),
        ]

    def __str__(self) -> str:
        upper = "∞" if self.to_value is None else self.to_value
        return f"[{self.from_value}, {upper}] @ {self.per_unit_amount} + {self.flat_amount}"


class ChargeFilter(models.Model):
    """Alternative pricing for events whose ``key`` property is in ``values``."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    charge = models.ForeignKey(Charge, on_delete=models.CASCADE, related_name="filters")
    key = models.CharField(max_length=100)
    values = models.JSONField(default=list)
    properties = models.JSONField(default=dict, blank=True)
    invoice_display_name = models.CharField(max_length=255, blank=True)

    class Meta:
        db_table = "billing_charge_filters"
        verbose_name = _("Charge Filter")
        verbose_name_plural = _("Charge Filters")

    def __str__(self) -> str:
        return f"{self.key} in {self.values}"

    def get_pricing(self) -> ChargePricing:
        """Filter properties override the parent charge's properties key by key."""
        merged = {**(self.charge.properties or {}), **(self.properties or {})}
        return parse_pricing(self.charge.charge_model, merged, self.charge.graduated_ranges.all())
