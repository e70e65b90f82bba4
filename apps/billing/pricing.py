"""
Typed charge pricing.

A charge stores its model-specific parameters as a JSON bag (camelCase keys,
as submitted by tenants). ``parse_pricing`` turns that bag into exactly one
of the pricing variants below so the rating code can match on a closed set
of shapes instead of probing dictionary keys.

Supported models:
- STANDARD:   {amount, currency}
- PACKAGE:    {amount, packageSize, currency}
- PERCENTAGE: {rate, fixedAmount, freeUnitsPerEvent, freeUnitsPerTotalAggregation}
- GRADUATED / VOLUME: ordered ranges partitioning [0, ∞)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from django.db import models
from django.utils.translation import gettext_lazy as _

from apps.common.validators import normalize_currency_code

from .exceptions import ValidationError
from .money import ZERO, to_decimal


class ChargeModel(models.TextChoices):
    STANDARD = "STANDARD", _("Standard")
    GRADUATED = "GRADUATED", _("Graduated")
    VOLUME = "VOLUME", _("Volume")
    PACKAGE = "PACKAGE", _("Package")
    PERCENTAGE = "PERCENTAGE", _("Percentage")


PROPERTY_MODELS = frozenset({ChargeModel.STANDARD, ChargeModel.PACKAGE, ChargeModel.PERCENTAGE})
RANGE_MODELS = frozenset({ChargeModel.GRADUATED, ChargeModel.VOLUME})


# ===============================================================================
# PRICING VARIANTS
# ===============================================================================


@dataclass(frozen=True)
class PriceRange:
    """One tier of a graduated/volume price. ``to_value`` None means unbounded."""

    from_value: Decimal
    to_value: Decimal | None
    per_unit_amount: Decimal
    flat_amount: Decimal = ZERO
    order: int = 0

    def contains(self, usage: Decimal) -> bool:
        return usage >= self.from_value and (self.to_value is None or usage <= self.to_value)


@dataclass(frozen=True)
class StandardPricing:
    amount: Decimal
    currency: str = ""


@dataclass(frozen=True)
class PackagePricing:
    amount: Decimal
    package_size: Decimal
    currency: str = ""


@dataclass(frozen=True)
class PercentagePricing:
    """
    ``rate`` is a fraction of the billable units, not a percent: 0.015 bills
    1.5%. Percent values such as 1.5 must be divided by 100 before they are
    stored. ``fixed_amount`` is added whenever the charge is rated.
    """

    rate: Decimal
    fixed_amount: Decimal = ZERO
    # Applied per event during aggregation, carried here for completeness
    free_units_per_event: Decimal = ZERO
    free_units_per_total_aggregation: Decimal = ZERO


@dataclass(frozen=True)
class GraduatedPricing:
    ranges: tuple[PriceRange, ...]


@dataclass(frozen=True)
class VolumePricing:
    ranges: tuple[PriceRange, ...]


ChargePricing = StandardPricing | PackagePricing | PercentagePricing | GraduatedPricing | VolumePricing


# ===============================================================================
# PARSING
# ===============================================================================


def parse_charge_model(value: Any) -> ChargeModel:
    if isinstance(value, ChargeModel):
        return value
    try:
        return ChargeModel(str(value).strip().upper())
    except ValueError as e:
        raise ValidationError(f"unknown charge model {value!r}", field="charge_model") from e


def _lookup(properties: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in properties and properties[key] is not None:
            return properties[key]
    return None


def _required_amount(properties: Mapping[str, Any], key: str, snake_key: str) -> Decimal:
    value = _lookup(properties, key, snake_key)
    if value is None:
        raise ValidationError("is required", field=f"properties.{key}")
    amount = to_decimal(value, field=f"properties.{key}")
    if amount < ZERO:
        raise ValidationError("must not be negative", field=f"properties.{key}")
    return amount


def _optional_amount(properties: Mapping[str, Any], key: str, snake_key: str) -> Decimal:
    if _lookup(properties, key, snake_key) is None:
        return ZERO
    return _required_amount(properties, key, snake_key)


def _range_attr(item: Any, key: str, snake_key: str) -> Any:
    if isinstance(item, Mapping):
        return _lookup(item, key, snake_key)
    return getattr(item, snake_key, None)


def parse_ranges(ranges: Iterable[Any] | None) -> tuple[PriceRange, ...]:
    """
    Build validated, order-sorted price ranges.

    Accepts GraduatedRange rows, PriceRange instances or dicts with either
    camelCase or snake_case keys. Missing ``order`` falls back to list position.
    """
    parsed: list[PriceRange] = []
    for position, item in enumerate(ranges or ()):
        if isinstance(item, PriceRange):
            parsed.append(item)
            continue

        field = f"graduated_ranges[{position}]"
        from_value = _range_attr(item, "fromValue", "from_value")
        per_unit = _range_attr(item, "perUnitAmount", "per_unit_amount")
        if from_value is None:
            raise ValidationError("fromValue is required", field=field)
        if per_unit is None:
            raise ValidationError("perUnitAmount is required", field=field)

        to_value = _range_attr(item, "toValue", "to_value")
        flat_amount = _range_attr(item, "flatAmount", "flat_amount")
        order = _range_attr(item, "order", "order")

        parsed.append(
            PriceRange(
                from_value=to_decimal(from_value, field=f"{field}.fromValue"),
                to_value=None if to_value is None else to_decimal(to_value, field=f"{field}.toValue"),
                per_unit_amount=to_decimal(per_unit, field=f"{field}.perUnitAmount"),
                flat_amount=ZERO if flat_amount is None else to_decimal(flat_amount, field=f"{field}.flatAmount"),
                order=position if order is None else int(order),
            )
        )

    ordered = tuple(sorted(parsed, key=lambda r: r.order))
    validate_ranges(ordered)
    return ordered


def validate_ranges(ranges: tuple[PriceRange, ...]) -> None:
    """
    Ranges sorted by order must partition [0, ∞) without gaps or overlaps:
    the first starts at 0, each starts where the previous ends and only the
    last one is unbounded.
    """
    if not ranges:
        raise ValidationError("at least one range is required", field="graduated_ranges")

    previous: PriceRange | None = None
    for index, current in enumerate(ranges):
        field = f"graduated_ranges[{index}]"
        if current.per_unit_amount < ZERO or current.flat_amount < ZERO:
            raise ValidationError("amounts must not be negative", field=field)

        if previous is None:
            if current.from_value != ZERO:
                raise ValidationError("first range must start at 0", field=field)
        elif previous.to_value is None:
            raise ValidationError("only the last range may be unbounded", field=f"graduated_ranges[{index - 1}]")
        elif current.from_value != previous.to_value:
            raise ValidationError(
                f"fromValue {current.from_value} must equal previous toValue {previous.to_value}",
                field=field,
            )

        if current.to_value is not None and current.to_value <= current.from_value:
            raise ValidationError("toValue must be greater than fromValue", field=field)
        previous = current

    if ranges[-1].to_value is not None:
        raise ValidationError("last range must be unbounded (toValue = null)", field=f"graduated_ranges[{len(ranges) - 1}]")


def parse_pricing(
    model: ChargeModel | str,
    properties: Mapping[str, Any] | None,
    ranges: Iterable[Any] | None = None,
) -> ChargePricing:
    """Resolve a charge model plus its raw parameters into a typed pricing variant."""
    charge_model = parse_charge_model(model)

    if charge_model in RANGE_MODELS:
        parsed_ranges = parse_ranges(ranges)
        if charge_model == ChargeModel.GRADUATED:
            return GraduatedPricing(ranges=parsed_ranges)
        return VolumePricing(ranges=parsed_ranges)

    if not isinstance(properties, Mapping) or not properties:
        raise ValidationError(f"{charge_model} charge model requires properties", field="properties")

    if charge_model == ChargeModel.STANDARD:
        return StandardPricing(
            amount=_required_amount(properties, "amount", "amount"),
            currency=normalize_currency_code(properties.get("currency")),
        )

    if charge_model == ChargeModel.PACKAGE:
        package_size = _required_amount(properties, "packageSize", "package_size")
        if package_size <= ZERO:
            raise ValidationError("must be greater than 0", field="properties.packageSize")
        return PackagePricing(
            amount=_required_amount(properties, "amount", "amount"),
            package_size=package_size,
            currency=normalize_currency_code(properties.get("currency")),
        )

    return PercentagePricing(
        rate=_required_amount(properties, "rate", "rate"),
        fixed_amount=_optional_amount(properties, "fixedAmount", "fixed_amount"),
        free_units_per_event=_optional_amount(properties, "freeUnitsPerEvent", "free_units_per_event"),
        free_units_per_total_aggregation=_optional_amount(
            properties, "freeUnitsPerTotalAggregation", "free_units_per_total_aggregation"
        ),
    )


def pricing_currency(pricing: ChargePricing) -> str:
    """Currency declared by the pricing, empty when the model has none."""
    if isinstance(pricing, StandardPricing | PackagePricing):
        return pricing.currency
    return ""


__all__ = [
    "PROPERTY_MODELS",
    "RANGE_MODELS",
    "ChargeModel",
    "ChargePricing",
    "GraduatedPricing",
    "PackagePricing",
    "PercentagePricing",
    "PriceRange",
    "StandardPricing",
    "VolumePricing",
    "parse_charge_model",
    "parse_pricing",
    "parse_ranges",
    "pricing_currency",
    "validate_ranges",
]
