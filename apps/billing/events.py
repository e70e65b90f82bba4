"""
Domain events for the billing core.

Lifecycle operations call ``record_event`` inside their transaction, so an
event exists if and only if the state change it describes was committed.
``dispatch_pending_events`` later delivers the rows through the
``domain_event`` signal; webhook, email and invoicing collaborators connect
receivers to it. Delivery is at-least-once, receivers must be idempotent on
the event id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from django.db import transaction
from django.dispatch import Signal

from apps.common.types import EventPayload

from . import config as billing_config
from .event_models import DomainEvent

if TYPE_CHECKING:
    from .subscription_models import Subscription

logger = logging.getLogger(__name__)

# Sent with ``event`` (DomainEvent) and ``message`` (dict) keyword arguments
domain_event = Signal()

# ===============================================================================
# EVENT TYPES
# ===============================================================================

SUBSCRIPTION_CREATED = "subscription.created"
SUBSCRIPTION_CANCELED = "subscription.canceled"
SUBSCRIPTION_PAUSED = "subscription.paused"
SUBSCRIPTION_RESUMED = "subscription.resumed"
SUBSCRIPTION_PLAN_CHANGED = "subscription.plan_changed"
SUBSCRIPTION_PLAN_CHANGE_SCHEDULED = "subscription.plan_change_scheduled"
SUBSCRIPTION_TRIAL_ENDED = "subscription.trial_ended"
INVOICE_GENERATION_REQUESTED = "invoice.generation_requested"

DISPATCH_TASK = "apps.billing.tasks.dispatch_domain_events_task"
DISPATCH_TASK_TIMEOUT = 120


# ===============================================================================
# RECORDING
# ===============================================================================


def record_event(event_type: str, subscription: Subscription, payload: EventPayload | None = None) -> DomainEvent:
    """Write an outbox row for ``subscription`` in the current transaction."""
    data: dict[str, Any] = {
        **(payload or {}),
        "subscriptionId": str(subscription.id),
        "customerId": str(subscription.customer_id),
    }
    event = DomainEvent.objects.create(
        event_type=event_type,
        subscription=subscription,
        customer_id=subscription.customer_id,
        payload=data,
    )
    logger.info(f"📨 [Events] Recorded {event_type} for subscription {subscription.id}")
    schedule_event_dispatch()
    return event


def schedule_event_dispatch() -> None:
    """Deliver pending events once the surrounding transaction commits."""
    if billing_config.dispatch_events_async():
        transaction.on_commit(_queue_dispatch_task)
    else:
        transaction.on_commit(dispatch_pending_events)


def _queue_dispatch_task() -> None:
    from django_q.tasks import async_task  # noqa: PLC0415

    async_task(DISPATCH_TASK, timeout=DISPATCH_TASK_TIMEOUT)


# ===============================================================================
# DISPATCH
# ===============================================================================


def dispatch_pending_events(batch_size: int | None = None) -> dict[str, int]:
    """
    Deliver up to ``batch_size`` pending events in creation order.

    A receiver raising marks the attempt as failed; the event stays pending
    until it has failed ``BILLING_EVENT_MAX_ATTEMPTS`` times.
    """
    limit = batch_size or billing_config.get_event_dispatch_batch_size()
    max_attempts = billing_config.get_event_max_attempts()
    stats = {"dispatched": 0, "failed": 0}

    with transaction.atomic():
        events = list(
            DomainEvent.objects.select_for_update(skip_locked=True)
            .filter(status=DomainEvent.Status.PENDING)
            .order_by("created_at", "id")[:limit]
        )

        for event in events:
            responses = domain_event.send_robust(sender=DomainEvent, event=event, message=event.as_message())
            errors = [response for _receiver, response in responses if isinstance(response, Exception)]

            if errors:
                error_text = "; ".join(f"{type(err).__name__}: {err}" for err in errors)
                event.mark_failed_attempt(error_text, max_attempts)
                stats["failed"] += 1
                logger.warning(
                    f"⚠️ [Events] Delivery of {event.event_type} {event.id} failed "
                    f"(attempt {event.attempts}/{max_attempts}): {error_text}"
                )
            else:
                event.mark_dispatched()
                stats["dispatched"] += 1

    if events:
        logger.info(f"📬 [Events] Dispatched {stats['dispatched']} event(s), {stats['failed']} failed")
    return stats


__all__ = [
    "INVOICE_GENERATION_REQUESTED",
    "SUBSCRIPTION_CANCELED",
    "SUBSCRIPTION_CREATED",
    "SUBSCRIPTION_PAUSED",
    "SUBSCRIPTION_PLAN_CHANGED",
    "SUBSCRIPTION_PLAN_CHANGE_SCHEDULED",
    "SUBSCRIPTION_RESUMED",
    "SUBSCRIPTION_TRIAL_ENDED",
    "dispatch_pending_events",
    "domain_event",
    "record_event",
    "schedule_event_dispatch",
]
