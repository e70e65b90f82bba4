"""Billing background tasks.

Django-Q2 tasks for the billing core: delivering the domain event outbox
and the period-end cutovers an external scheduler triggers.
"""

from __future__ import annotations

import logging
from typing import Any

from django.utils import timezone

from .events import dispatch_pending_events
from .subscription_models import Subscription
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


def dispatch_domain_events_task(batch_size: int | None = None) -> dict[str, Any]:
    """Deliver one batch of pending domain events."""
    stats = dispatch_pending_events(batch_size)
    return {"success": True, **stats}


def apply_due_cutovers_task() -> dict[str, Any]:
    """
    Apply scheduled plan changes and cancellations that are due.

    Each subscription is handled in its own transaction; one failure does
    not block the others.
    """
    now = timezone.now()
    applied = 0
    errors: list[str] = []

    for subscription in Subscription.objects.filter(pending_plan_effective_at__lte=now):
        result = SubscriptionService.apply_scheduled_plan_change(subscription, now=now)
        if result.is_ok():
            applied += 1
        else:
            errors.append(f"{subscription.id}: {result.unwrap_err()}")

    for subscription in Subscription.objects.filter(cancel_at__lte=now, canceled_at__isnull=True):
        result = SubscriptionService.apply_scheduled_cancellation(subscription, now=now)
        if result.is_ok():
            applied += 1
        else:
            errors.append(f"{subscription.id}: {result.unwrap_err()}")

    logger.info(f"🗓️ [Billing] Applied {applied} period-end cutover(s), {len(errors)} failed")
    return {"success": not errors, "applied": applied, "errors": errors}
