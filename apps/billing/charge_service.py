"""
Charge administration service.

Charges are validated when written: properties must parse into the typed
pricing for the charge model and ranges must partition [0, ∞). A charge
that would misprice usage never reaches the database.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, TypedDict

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from apps.common.types import Err, Ok, Result

from .charge_models import Charge, ChargeFilter, GraduatedRange
from .exceptions import BillingError, NotFound, ValidationError
from .periods import BillingTiming
from .plan_models import BillableMetric, Plan
from .pricing import RANGE_MODELS, PriceRange, parse_charge_model, parse_pricing
from .validators import log_security_event, validate_financial_json, validate_min_amount_cents

logger = logging.getLogger(__name__)


# ===============================================================================
# TYPE DEFINITIONS
# ===============================================================================


class ChargeFilterData(TypedDict, total=False):
    """Alternative pricing for events whose ``key`` property is one of ``values``."""

    key: str
    values: list[str]
    properties: dict[str, Any]
    invoice_display_name: str


class ChargeData(TypedDict, total=False):
    """Data for creating or updating a charge."""

    charge_model: str
    billing_timing: str
    invoice_display_name: str
    min_amount_cents: int | None
    prorated: bool
    properties: dict[str, Any]
    graduated_ranges: list[dict[str, Any]]
    filters: list[ChargeFilterData]


def _get_or_none(model: type, pk: Any) -> Any:
    try:
        return model.objects.filter(pk=pk).first()
    except (DjangoValidationError, ValueError):
        return None


def _billing_timing(value: Any) -> str:
    try:
        return BillingTiming(str(value).strip().upper())
    except ValueError as e:
        raise ValidationError(f"unknown billing timing {value!r}", field="billing_timing") from e


def _parse_filters(
    filters: Iterable[Any] | None,
    metric: BillableMetric,
    model: str,
    properties: dict[str, Any],
    ranges: Any,
) -> list[ChargeFilter]:
    """
    Validate filter rows before anything is written. Each filter's properties
    are merged over the charge's and must parse for the charge model.
    """
    parsed: list[ChargeFilter] = []
    allowed_keys = set(metric.filter_keys or [])
    for position, item in enumerate(filters or ()):
        field = f"filters[{position}]"
        if not isinstance(item, dict):
            raise ValidationError("must be an object", field=field)

        key = str(item.get("key") or "").strip()
        if not key:
            raise ValidationError("is required", field=f"{field}.key")
        if allowed_keys and key not in allowed_keys:
            raise ValidationError(f"metric {metric.code} cannot be filtered on {key!r}", field=f"{field}.key")

        values = item.get("values")
        if not isinstance(values, list) or not values or not all(isinstance(v, str) for v in values):
            raise ValidationError("must be a non-empty list of strings", field=f"{field}.values")

        filter_properties = item.get("properties") or {}
        if not isinstance(filter_properties, dict):
            raise ValidationError("must be an object", field=f"{field}.properties")
        validate_financial_json(filter_properties, f"{field}.properties")
        parse_pricing(model, {**(properties or {}), **filter_properties}, ranges)

        parsed.append(
            ChargeFilter(
                key=key,
                values=values,
                properties=filter_properties,
                invoice_display_name=item.get("invoice_display_name", ""),
            )
        )
    return parsed


def _save_filters(charge: Charge, filters: list[ChargeFilter]) -> None:
    charge.filters.all().delete()
    for charge_filter in filters:
        charge_filter.charge = charge
    ChargeFilter.objects.bulk_create(filters)


def _save_ranges(charge: Charge, ranges: Iterable[PriceRange]) -> None:
    charge.graduated_ranges.all().delete()
    GraduatedRange.objects.bulk_create(
        [
            GraduatedRange(
                charge=charge,
                from_value=price_range.from_value,
                to_value=price_range.to_value,
                per_unit_amount=price_range.per_unit_amount,
                flat_amount=price_range.flat_amount,
                order=position,
            )
            for position, price_range in enumerate(ranges)
        ]
    )


# ===============================================================================
# CHARGE SERVICE
# ===============================================================================


class ChargeService:
    """Create and update usage charges on plans."""

    @staticmethod
    def create_charge(
        plan: Plan | str,
        metric: BillableMetric | str,
        data: ChargeData,
    ) -> Result[Charge, BillingError]:
        """Attach a charge for ``metric`` to ``plan``; one charge per plan and metric."""
        try:
            with transaction.atomic():
                plan_obj = plan if isinstance(plan, Plan) else _get_or_none(Plan, plan)
                if plan_obj is None:
                    raise NotFound(f"Plan not found: {plan}")
                metric_obj = metric if isinstance(metric, BillableMetric) else _get_or_none(BillableMetric, metric)
                if metric_obj is None:
                    raise NotFound(f"Billable metric not found: {metric}")

                if Charge.objects.filter(plan=plan_obj, billable_metric=metric_obj).exists():
                    raise ValidationError(
                        f"plan {plan_obj.code} already has a charge for metric {metric_obj.code}",
                        field="billable_metric",
                    )

                model = parse_charge_model(data.get("charge_model"))
                properties = data.get("properties") or {}
                pricing = parse_pricing(model, properties, data.get("graduated_ranges"))
                filters = _parse_filters(
                    data.get("filters"), metric_obj, model, properties, data.get("graduated_ranges")
                )
                validate_min_amount_cents(data.get("min_amount_cents"))

                charge = Charge.objects.create(
                    plan=plan_obj,
                    billable_metric=metric_obj,
                    charge_model=model,
                    billing_timing=_billing_timing(data.get("billing_timing", BillingTiming.IN_ARREARS)),
                    invoice_display_name=data.get("invoice_display_name", ""),
                    min_amount_cents=data.get("min_amount_cents"),
                    prorated=bool(data.get("prorated", False)),
                    properties={} if model in RANGE_MODELS else properties,
                )
                if model in RANGE_MODELS:
                    _save_ranges(charge, pricing.ranges)
                if filters:
                    _save_filters(charge, filters)

                log_security_event(
                    event_type="charge_created",
                    details={
                        "charge_id": str(charge.id),
                        "plan_id": str(plan_obj.id),
                        "metric_code": metric_obj.code,
                        "charge_model": model,
                        "filter_count": len(filters),
                        "critical_financial_operation": True,
                    },
                )
                logger.info(f"🧾 [Charge] Created {model} charge {charge.id} on plan {plan_obj.code}")
                return Ok(charge)

        except BillingError as e:
            logger.warning(f"⚠️ [Charge] Could not create charge: {e}")
            return Err(e)

    @staticmethod
    def update_charge(charge: Charge | str, data: ChargeData) -> Result[Charge, BillingError]:
        """
        Update a charge. Omitted keys keep their current value; switching to a
        range model requires ranges in the same call.
        """
        try:
            with transaction.atomic():
                charge_id = charge.pk if isinstance(charge, Charge) else charge
                try:
                    locked = Charge.objects.select_for_update().filter(pk=charge_id).first()
                except (DjangoValidationError, ValueError):
                    locked = None
                if locked is None:
                    raise NotFound(f"Charge not found: {charge_id}")

                model = parse_charge_model(data.get("charge_model", locked.charge_model))
                properties = data["properties"] if "properties" in data else locked.properties
                if "graduated_ranges" in data:
                    ranges: Any = data["graduated_ranges"]
                elif model in RANGE_MODELS:
                    ranges = list(locked.graduated_ranges.all())
                else:
                    ranges = None
                pricing = parse_pricing(model, properties, ranges)
                # Kept filters must still price under the new model and properties
                if "filters" in data:
                    raw_filters: Any = data["filters"]
                else:
                    raw_filters = [
                        {
                            "key": f.key,
                            "values": f.values,
                            "properties": f.properties,
                            "invoice_display_name": f.invoice_display_name,
                        }
                        for f in locked.filters.all()
                    ]
                filters = _parse_filters(raw_filters, locked.billable_metric, model, properties, ranges)

                if "min_amount_cents" in data:
                    validate_min_amount_cents(data["min_amount_cents"])
                    locked.min_amount_cents = data["min_amount_cents"]
                if "billing_timing" in data:
                    locked.billing_timing = _billing_timing(data["billing_timing"])
                if "invoice_display_name" in data:
                    locked.invoice_display_name = data["invoice_display_name"]
                if "prorated" in data:
                    locked.prorated = bool(data["prorated"])

                locked.charge_model = model
                locked.properties = {} if model in RANGE_MODELS else (properties or {})
                locked.save()

                if model in RANGE_MODELS:
                    _save_ranges(locked, pricing.ranges)
                else:
                    locked.graduated_ranges.all().delete()
                if "filters" in data:
                    _save_filters(locked, filters)

                log_security_event(
                    event_type="charge_updated",
                    details={
                        "charge_id": str(locked.id),
                        "charge_model": model,
                        "filter_count": len(filters),
                        "updated_fields": sorted(data.keys()),
                        "critical_financial_operation": True,
                    },
                )
                logger.info(f"🧾 [Charge] Updated charge {locked.id}")
                return Ok(locked)

        except BillingError as e:
            logger.warning(f"⚠️ [Charge] Could not update charge: {e}")
            return Err(e)
