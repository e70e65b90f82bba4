"""
Billing period arithmetic.

Periods are computed with calendar arithmetic, not fixed durations: a
monthly period starting on March 15th ends on April 15th whatever the
length of March. When the target month is shorter than the start day,
the period ends on the last day of that month (January 31st -> February
28th/29th).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from dateutil.relativedelta import relativedelta
from django.db import models
from django.utils.translation import gettext_lazy as _

from .exceptions import ConfigurationError


class BillingInterval(models.TextChoices):
    HOURLY = "HOURLY", _("Hourly")
    DAILY = "DAILY", _("Daily")
    WEEKLY = "WEEKLY", _("Weekly")
    MONTHLY = "MONTHLY", _("Monthly")
    QUARTERLY = "QUARTERLY", _("Quarterly")
    YEARLY = "YEARLY", _("Yearly")


class BillingTiming(models.TextChoices):
    IN_ADVANCE = "IN_ADVANCE", _("In advance")
    IN_ARREARS = "IN_ARREARS", _("In arrears")


INTERVAL_DELTAS: dict[BillingInterval, relativedelta] = {
    BillingInterval.HOURLY: relativedelta(hours=1),
    BillingInterval.DAILY: relativedelta(days=1),
    BillingInterval.WEEKLY: relativedelta(days=7),
    BillingInterval.MONTHLY: relativedelta(months=1),
    BillingInterval.QUARTERLY: relativedelta(months=3),
    BillingInterval.YEARLY: relativedelta(years=1),
}


def parse_interval(value: Any) -> BillingInterval:
    """Resolve an interval from an enum member or its (case-insensitive) name."""
    if isinstance(value, BillingInterval):
        return value
    try:
        return BillingInterval(str(value).strip().upper())
    except ValueError as e:
        raise ConfigurationError(f"Unrecognized billing interval: {value!r}") from e


def period_end(start: datetime, interval: BillingInterval | str) -> datetime:
    """
    Return the end of the billing period that begins at ``start``.

    Raises:
        ConfigurationError: if ``interval`` is not a known billing interval.
            Unknown values are never defaulted to MONTHLY.
    """
    return start + INTERVAL_DELTAS[parse_interval(interval)]


__all__ = [
    "INTERVAL_DELTAS",
    "BillingInterval",
    "BillingTiming",
    "parse_interval",
    "period_end",
]
