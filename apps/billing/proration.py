"""
Proration calculator.

Values the unused remainder of a billing period. Day counts are whole days
rounded to the nearest day, so a cancellation a few hours into a day counts
that day as used only once more than half of it has elapsed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .exceptions import ValidationError
from .money import ZERO, to_decimal

MICROSECONDS_PER_DAY = Decimal(86_400 * 1_000_000)


@dataclass(frozen=True)
class ProrationResult:
    """Outcome of a proration, kept together for credit note metadata."""

    amount: Decimal
    remaining_days: int
    total_days: int
    used_days: int

    def to_metadata(self) -> dict[str, Any]:
        return {
            "remainingDays": self.remaining_days,
            "totalDays": self.total_days,
        }


def _total_microseconds(delta: timedelta) -> int:
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from ``start`` to ``end``, rounded half-up and never negative."""
    days = (Decimal(_total_microseconds(end - start)) / MICROSECONDS_PER_DAY).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return max(0, int(days))


def calculate_proration(
    period_start: datetime,
    period_end: datetime,
    now: datetime,
    period_price: Decimal | int | str,
) -> ProrationResult:
    """
    Value of the unused part of ``[period_start, period_end]`` as of ``now``.

    The amount is returned at full precision; rounding to the currency's
    minor unit is left to whoever persists it.
    """
    price = to_decimal(period_price, field="period_price")
    if price < ZERO:
        raise ValidationError("must not be negative", field="period_price")

    total_days = days_between(period_start, period_end)
    used_days = days_between(period_start, now)
    remaining_days = max(0, total_days - used_days)

    if total_days == 0:
        amount = ZERO
    else:
        amount = price * remaining_days / total_days

    return ProrationResult(
        amount=amount,
        remaining_days=remaining_days,
        total_days=total_days,
        used_days=used_days,
    )


def prorate(
    period_start: datetime,
    period_end: datetime,
    now: datetime,
    period_price: Decimal | int | str,
) -> Decimal:
    """Monetary value of the unused remainder of the period."""
    return calculate_proration(period_start, period_end, now, period_price).amount


__all__ = [
    "ProrationResult",
    "calculate_proration",
    "days_between",
    "prorate",
]
