"""
Charge rating.

Turns aggregated usage into a monetary amount for one charge. The pure
``compute_charge``/``rate_pricing`` functions do the arithmetic; the
``ChargeRatingService`` wraps them for a subscription's charges and returns
invoice-ready line items.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import TYPE_CHECKING, Any

from apps.common.types import Err, Ok, Result

from .exceptions import BillingError, ConfigurationMismatch, NotFound, ValidationError
from .money import ZERO, cents_to_amount, quantize_money, to_decimal
from .pricing import (
    ChargeModel,
    ChargePricing,
    GraduatedPricing,
    PackagePricing,
    PercentagePricing,
    PriceRange,
    StandardPricing,
    VolumePricing,
    parse_pricing,
    pricing_currency,
)

if TYPE_CHECKING:
    from .charge_models import Charge
    from .subscription_models import Subscription

logger = logging.getLogger(__name__)


# ===============================================================================
# PURE CALCULATION
# ===============================================================================


def _graduated_amount(ranges: tuple[PriceRange, ...], usage: Decimal) -> Decimal:
    """Each unit is priced at the rate of the range it falls in; every entered range adds its flat fee."""
    total = ZERO
    for price_range in ranges:
        if usage <= price_range.from_value:
            break
        upper = usage if price_range.to_value is None else min(usage, price_range.to_value)
        total += (upper - price_range.from_value) * price_range.per_unit_amount + price_range.flat_amount
    return total


def _volume_amount(ranges: tuple[PriceRange, ...], usage: Decimal) -> Decimal:
    """All units are priced at the rate of the single range containing the total."""
    if usage == ZERO:
        return ZERO
    for price_range in ranges:
        if price_range.contains(usage):
            return usage * price_range.per_unit_amount + price_range.flat_amount
    raise ValidationError(f"no range covers usage {usage}", field="graduated_ranges")


def rate_pricing(
    pricing: ChargePricing,
    aggregated_usage: Decimal | int | str,
    min_amount_cents: int | None = None,
) -> Decimal:
    """
    Amount owed for ``aggregated_usage`` under ``pricing``.

    Raises:
        ValidationError: usage is negative or not a number.
    """
    usage = to_decimal(aggregated_usage, field="aggregated_usage")
    if usage < ZERO:
        raise ValidationError("must not be negative", field="aggregated_usage")

    match pricing:
        case StandardPricing(amount=amount):
            result = amount * usage
        case PackagePricing(amount=amount, package_size=package_size):
            packages = (usage / package_size).to_integral_value(rounding=ROUND_CEILING)
            result = amount * packages
        case PercentagePricing(rate=rate, fixed_amount=fixed_amount, free_units_per_total_aggregation=free_units):
            result = rate * max(ZERO, usage - free_units) + fixed_amount
        case GraduatedPricing(ranges=ranges):
            result = _graduated_amount(ranges, usage)
        case VolumePricing(ranges=ranges):
            result = _volume_amount(ranges, usage)
        case _:
            raise ValidationError(f"unsupported pricing {type(pricing).__name__}", field="charge_model")

    if min_amount_cents:
        result = max(result, cents_to_amount(min_amount_cents))
    return result


def compute_charge(
    model: ChargeModel | str,
    properties: Mapping[str, Any] | None,
    ranges: Iterable[Any] | None,
    aggregated_usage: Decimal | int | str,
    min_amount_cents: int | None = None,
) -> Decimal:
    """Parse the charge configuration and rate ``aggregated_usage`` against it."""
    return rate_pricing(parse_pricing(model, properties, ranges), aggregated_usage, min_amount_cents)


def rate_charge(charge: Charge, aggregated_usage: Decimal | int | str) -> Decimal:
    """Rate usage against a persisted Charge."""
    return rate_pricing(charge.get_pricing(), aggregated_usage, charge.min_amount_cents)


# ===============================================================================
# SUBSCRIPTION RATING
# ===============================================================================


@dataclass(frozen=True)
class UsageLineItem:
    """One rated charge ready to be copied onto an invoice."""

    charge_id: str
    metric_code: str
    description: str
    quantity: Decimal
    unit_amount: Decimal
    amount: Decimal
    currency: str


class ChargeRatingService:
    """Rates a subscription's metered usage against its plan charges."""

    @staticmethod
    def rate_usage(
        subscription: Subscription,
        usage_by_charge: Mapping[Any, Decimal | int | str],
    ) -> Result[list[UsageLineItem], BillingError]:
        """
        Rate usage keyed by charge id.

        Charges with zero usage are skipped even when they carry a minimum
        amount, as are charges that rate to zero.
        Usage reported for a charge that is not on the subscription's plan is
        a NotFound error.
        """
        try:
            charges = {
                str(charge.id): charge
                for charge in subscription.plan.charges.select_related("billable_metric").prefetch_related(
                    "graduated_ranges"
                )
            }
            unknown = [str(key) for key in usage_by_charge if str(key) not in charges]
            if unknown:
                raise NotFound(f"Charge not on plan {subscription.plan_id}: {', '.join(sorted(unknown))}")

            items: list[UsageLineItem] = []
            for key, raw_usage in usage_by_charge.items():
                charge = charges[str(key)]
                pricing = charge.get_pricing()
                currency = pricing_currency(pricing)
                if currency and currency != subscription.currency:
                    raise ConfigurationMismatch(
                        f"Charge {charge.id} is priced in {currency}, subscription bills in {subscription.currency}"
                    )

                usage = to_decimal(raw_usage, field="aggregated_usage")
                # No usage, no line item; minimums only apply to charges that were used
                if usage == ZERO:
                    continue
                amount = rate_pricing(pricing, usage, charge.min_amount_cents)
                if amount <= ZERO:
                    continue

                metric = charge.billable_metric
                items.append(
                    UsageLineItem(
                        charge_id=str(charge.id),
                        metric_code=metric.code,
                        description=charge.invoice_display_name or f"{metric.name} ({usage} units)",
                        quantity=usage,
                        unit_amount=quantize_money(amount / usage),
                        amount=quantize_money(amount),
                        currency=subscription.currency,
                    )
                )

            logger.info(
                f"📊 [Rating] Rated {len(items)} charge(s) for subscription {subscription.id}"
            )
            return Ok(items)
        except BillingError as e:
            logger.warning(f"⚠️ [Rating] Could not rate usage for subscription {subscription.id}: {e}")
            return Err(e)


__all__ = [
    "ChargeRatingService",
    "UsageLineItem",
    "compute_charge",
    "rate_charge",
    "rate_pricing",
]
