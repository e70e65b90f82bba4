# ===============================================================================
# TEST FACTORIES FOR BILLING
# ===============================================================================

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from django.utils import timezone

from apps.billing.charge_service import ChargeService
from apps.billing.models import BillableMetric, Charge, Invoice, Plan, PlanPrice, Subscription
from apps.billing.periods import BillingInterval, BillingTiming
from apps.billing.subscription_service import SubscriptionService
from apps.customers.models import Customer


def create_customer(name: str = "Test Co", email: str = "billing@example.com") -> Customer:
    """Create a minimal company customer for tests."""
    return Customer.objects.create(name=name, customer_type="company", company_name=name, email=email)


# ===============================================================================
# PLAN FACTORY PARAMETER OBJECTS
# ===============================================================================


@dataclass
class PlanCreationRequest:
    """Parameter object for plan creation"""

    code: str = "starter"
    name: str = "Starter"
    interval: str = BillingInterval.MONTHLY
    billing_timing: str = BillingTiming.IN_ADVANCE
    prices: dict[str, Decimal] = field(default_factory=lambda: {"USD": Decimal("29.00")})
    is_active: bool = True


def create_plan(request: PlanCreationRequest | None = None, **overrides: Any) -> Plan:
    """Create a Plan with one PlanPrice per currency."""
    if request is None:
        request = PlanCreationRequest(**overrides)

    plan = Plan.objects.create(
        code=request.code,
        name=request.name,
        interval=request.interval,
        billing_timing=request.billing_timing,
        is_active=request.is_active,
    )
    for currency, amount in request.prices.items():
        PlanPrice.objects.create(plan=plan, currency=currency, amount=amount)
    return plan


def create_metric(code: str = "api_calls", name: str = "API calls") -> BillableMetric:
    return BillableMetric.objects.create(code=code, name=name, aggregation_type=BillableMetric.AggregationType.COUNT)


def create_charge(plan: Plan, metric: BillableMetric, **data: Any) -> Charge:
    """Create a charge through ChargeService so ranges are validated and ordered."""
    data.setdefault("charge_model", "STANDARD")
    if data["charge_model"] in ("STANDARD", "PACKAGE") and "properties" not in data:
        data["properties"] = {"amount": "0.10", "currency": "USD"}
    return ChargeService.create_charge(plan, metric, data).unwrap()


# ===============================================================================
# SUBSCRIPTION FACTORIES
# ===============================================================================


def create_subscription(
    customer: Customer | None = None,
    plan: Plan | None = None,
    currency: str = "USD",
    trial_days: int = 0,
    now: datetime | None = None,
) -> Subscription:
    """Subscribe through the service so status, periods and events are consistent."""
    customer = customer or create_customer()
    plan = plan or create_plan()
    return SubscriptionService.subscribe(customer, plan, currency, trial_days=trial_days, now=now).unwrap()


def create_invoice(
    subscription: Subscription,
    amount: Decimal = Decimal("29.00"),
    issued_at: datetime | None = None,
    status: str = Invoice.Status.FINALIZED,
) -> Invoice:
    """Create an issued invoice for a subscription."""
    return Invoice.objects.create(
        subscription=subscription,
        customer=subscription.customer,
        amount=amount,
        currency=subscription.currency,
        status=status,
        issued_at=issued_at or timezone.now(),
    )
