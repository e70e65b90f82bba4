"""
Plan catalogue models for the billing core.

A Plan fixes the billing interval and timing; its recurring price is kept
per currency in PlanPrice. BillableMetric describes what usage is measured,
aggregation itself happens upstream.
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

from apps.common.validators import normalize_currency_code

from .exceptions import ConfigurationMismatch
from .periods import BillingInterval, BillingTiming

logger = logging.getLogger(__name__)


# ===============================================================================
# BILLABLE METRIC
# ===============================================================================


class BillableMetric(models.Model):
    """A measurable usage dimension (API calls, GB stored, seats)."""

    class AggregationType(models.TextChoices):
        COUNT = "COUNT", _("Count")
        SUM = "SUM", _("Sum")
        MAX = "MAX", _("Max")
        UNIQUE_COUNT = "UNIQUE_COUNT", _("Unique count")
        LATEST = "LATEST", _("Latest")
        WEIGHTED_SUM = "WEIGHTED_SUM", _("Weighted sum")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=100, unique=True, help_text=_("Stable identifier used by event producers"))
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    aggregation_type = models.CharField(
        max_length=20,
        choices=AggregationType.choices,
        default=AggregationType.COUNT,
    )
    field_name = models.CharField(
        max_length=100,
        blank=True,
        help_text=_("Event property aggregated by SUM/MAX/UNIQUE_COUNT/LATEST"),
    )
    filter_keys = models.JSONField(default=list, blank=True, help_text=_("Event properties charges may filter on"))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_billable_metrics"
        verbose_name = _("Billable Metric")
        verbose_name_plural = _("Billable Metrics")
        ordering = ("code",)

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


# ===============================================================================
# PLAN
# ===============================================================================


class Plan(models.Model):
    """Subscribable offer: interval, timing and per-currency recurring prices."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=100, unique=True)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    interval = models.CharField(
        max_length=20,
        choices=BillingInterval.choices,
        default=BillingInterval.MONTHLY,
    )
    billing_timing = models.CharField(
        max_length=20,
        choices=BillingTiming.choices,
        default=BillingTiming.IN_ADVANCE,
    )
    is_active = models.BooleanField(default=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_plans"
        verbose_name = _("Plan")
        verbose_name_plural = _("Plans")
        ordering = ("name",)

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"

    def find_price(self, currency: str) -> PlanPrice | None:
        """Price row for ``currency`` or None."""
        code = normalize_currency_code(currency)
        return self.prices.filter(currency=code).first()

    def price_for(self, currency: str) -> Decimal:
        """
        Recurring amount charged per period in ``currency``.

        Raises:
            ConfigurationMismatch: the plan has no price in that currency.
        """
        price = self.find_price(currency)
        if price is None:
            raise ConfigurationMismatch(
                f"Plan {self.code} has no price configured for currency {normalize_currency_code(currency)}"
            )
        return price.amount

    def ensure_subscribable(self, currency: str) -> Decimal:
        """Return the plan price for ``currency`` if the plan can be subscribed to."""
        if not self.is_active:
            raise ConfigurationMismatch(f"Plan {self.code} is not active")
        return self.price_for(currency)


class PlanPrice(models.Model):
    """One recurring amount of a plan, unique per currency."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    plan = models.ForeignKey(Plan, on_delete=models.CASCADE, related_name="prices")
    currency = models.CharField(max_length=3, help_text=_("ISO 4217 code, upper-case"))
    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0"))],
        help_text=_("Amount per billing period in major currency units"),
    )

    class Meta:
        db_table = "billing_plan_prices"
        verbose_name = _("Plan Price")
        verbose_name_plural = _("Plan Prices")
        constraints: ClassVar[list] = [
            models.UniqueConstraint(fields=["plan", "currency"], name="plan_price_unique_currency"),
            models.CheckConstraint(condition=Q(amount__gte=0), name="plan_price_non_negative"),
        ]

    def __str__(self) -> str:
        return f"{self.plan.code}: {self.amount} {self.currency}"

    def save(self, *args: Any, **kwargs: Any) -> None:
        self.currency = normalize_currency_code(self.currency)
        super().save(*args, **kwargs)
