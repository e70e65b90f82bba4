"""
Decimal helpers shared by the billing calculators.

Amounts are always Decimal in major currency units. Floats are converted
through ``str`` to avoid binary rounding artefacts.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from . import config as billing_config
from .exceptions import ValidationError

ZERO = Decimal("0")
CENTS_PER_UNIT = Decimal("100")


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """Convert a number-like value to Decimal, rejecting anything non-numeric."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None or value == "":
        raise ValidationError("must be a number", field=field)
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as e:
            raise ValidationError(f"must be a number, got {value!r}", field=field) from e

    if not result.is_finite():
        raise ValidationError("must be a finite number", field=field)
    return result


def cents_to_amount(amount_cents: int) -> Decimal:
    """Convert minor units to a major-unit Decimal: 1250 -> Decimal("12.50")."""
    return Decimal(amount_cents) / CENTS_PER_UNIT


def quantize_money(amount: Decimal) -> Decimal:
    """Round a computed amount to the persisted monetary precision (half-up)."""
    return amount.quantize(billing_config.get_money_quantum(), rounding=ROUND_HALF_UP)
