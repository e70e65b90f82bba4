"""
Billing models for the usage billing core.

This file serves as a re-export hub; models live in feature modules.
"""

from __future__ import annotations

from .charge_models import Charge, ChargeFilter, GraduatedRange
from .event_models import DomainEvent
from .invoice_models import CreditNote, DocumentSequence, Invoice
from .plan_models import BillableMetric, Plan, PlanPrice
from .subscription_models import ScheduledPlanChange, Subscription

__all__ = [
    "BillableMetric",
    "Charge",
    "ChargeFilter",
    "CreditNote",
    "DocumentSequence",
    "DomainEvent",
    "GraduatedRange",
    "Invoice",
    "Plan",
    "PlanPrice",
    "ScheduledPlanChange",
    "Subscription",
]
