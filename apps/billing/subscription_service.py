"""
Subscription Service for the billing core
Business logic for the subscription lifecycle.

Provides:
- Subscription creation with optional trial
- Pause / resume
- Cancellation, immediately (with proration credit) or at period end
- Plan changes: upgrades applied now with a proration credit note,
  downgrades scheduled for the end of the current period
- Period-end cutovers for scheduled plan changes, cancellations and trials

Every operation locks the subscription row and runs in one transaction:
status, periods, credit note and outbox events are committed together or
not at all.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Literal

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.common.logging import billing_log_context
from apps.common.types import Err, Ok, Result
from apps.common.validators import normalize_currency_code
from apps.customers.models import Customer

from . import config as billing_config
from . import events
from .exceptions import BillingError, InvalidState, NotFound, ValidationError
from .invoice_models import CreditNote, Invoice
from .money import ZERO, quantize_money
from .periods import BillingTiming, period_end
from .plan_models import Plan
from .proration import ProrationResult, calculate_proration
from .state_machine import SubscriptionAction, SubscriptionStatus
from .subscription_models import ScheduledPlanChange, Subscription
from .validators import log_security_event, validate_financial_json

logger = logging.getLogger(__name__)

CancelMode = Literal["now", "period_end"]
CANCEL_MODES: tuple[str, ...] = ("now", "period_end")


# ===============================================================================
# INTERNAL HELPERS
# ===============================================================================


def _lock(subscription: Subscription | uuid.UUID | str) -> Subscription:
    """Re-read the subscription with a row lock held until the transaction ends."""
    pk = subscription.pk if isinstance(subscription, Subscription) else subscription
    try:
        return Subscription.objects.select_for_update().select_related("plan", "customer").get(pk=pk)
    except (Subscription.DoesNotExist, DjangoValidationError, ValueError) as e:
        raise NotFound(f"Subscription not found: {pk}") from e


def _apply(subscription: Subscription, action: SubscriptionAction) -> None:
    result = subscription.apply_transition(action)
    if result.is_err():
        raise result.unwrap_err()


def _issue_proration_credit(
    subscription: Subscription,
    period_price: Decimal,
    now: datetime,
    metadata: dict[str, Any],
) -> tuple[CreditNote | None, ProrationResult]:
    """
    Credit the unused part of the current period against the latest invoice.

    Nothing is issued when the subscription was never invoiced or when the
    rounded credit is not positive.
    """
    proration = calculate_proration(
        subscription.current_period_start,
        subscription.current_period_end,
        now,
        period_price,
    )
    amount = quantize_money(proration.amount)

    invoice = Invoice.objects.latest_for_subscription(subscription)
    if invoice is None or amount <= ZERO:
        logger.info(
            f"💳 [Subscription] No proration credit for {subscription.id} "
            f"(amount={amount}, invoiced={invoice is not None})"
        )
        return None, proration

    credit_note = CreditNote.objects.create(
        invoice=invoice,
        customer_id=subscription.customer_id,
        amount=amount,
        currency=subscription.currency,
        reason=CreditNote.Reason.ORDER_CHANGE,
        status=CreditNote.Status.FINALIZED,
        issued_at=now,
        metadata={**metadata, **proration.to_metadata()},
    )
    logger.info(
        f"💳 [Subscription] Credit note {credit_note.number} of {amount} {subscription.currency} "
        f"issued for {subscription.id} ({proration.remaining_days}/{proration.total_days} days unused)"
    )
    return credit_note, proration


def _credit_payload(credit_note: CreditNote | None) -> dict[str, Any]:
    if credit_note is None:
        return {}
    return {"creditNoteId": str(credit_note.id), "creditAmount": str(credit_note.amount)}


# ===============================================================================
# SUBSCRIPTION SERVICE
# ===============================================================================


class SubscriptionService:
    """
    Service for subscription lifecycle management.

    All methods return ``Result``; domain failures come back as ``Err``
    holding the BillingError. Anything else propagates.
    """

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    @staticmethod
    def get_subscription(subscription_id: uuid.UUID | str) -> Result[Subscription, BillingError]:
        try:
            return Ok(Subscription.objects.select_related("plan", "customer").get(pk=subscription_id))
        except (Subscription.DoesNotExist, DjangoValidationError, ValueError):
            return Err(NotFound(f"Subscription not found: {subscription_id}"))

    @staticmethod
    def get_plan(plan_id: uuid.UUID | str) -> Result[Plan, BillingError]:
        try:
            return Ok(Plan.objects.get(pk=plan_id))
        except (Plan.DoesNotExist, DjangoValidationError, ValueError):
            return Err(NotFound(f"Plan not found: {plan_id}"))

    @staticmethod
    def get_customer(customer_id: uuid.UUID | str) -> Result[Customer, BillingError]:
        try:
            return Ok(Customer.objects.get(pk=customer_id))
        except (Customer.DoesNotExist, DjangoValidationError, ValueError):
            return Err(NotFound(f"Customer not found: {customer_id}"))

    # =========================================================================
    # CREATION
    # =========================================================================

    @staticmethod
    def subscribe(
        customer: Customer,
        plan: Plan,
        currency: str | None = None,
        trial_days: int = 0,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Result[Subscription, BillingError]:
        """
        Create a subscription to ``plan`` billed in ``currency`` (defaults to
        BILLING_DEFAULT_CURRENCY).

        With ``trial_days`` > 0 the subscription starts TRIALING and its first
        period is the trial; otherwise it starts ACTIVE with a full period.
        """
        now = now or timezone.now()
        currency = normalize_currency_code(currency) or billing_config.get_default_currency()

        try:
            if isinstance(trial_days, bool) or not isinstance(trial_days, int) or trial_days < 0:
                raise ValidationError("must be a non-negative integer", field="trial_days")
            validate_financial_json(metadata, "metadata")

            with transaction.atomic():
                plan = Plan.objects.get(pk=plan.pk)
                price = plan.ensure_subscribable(currency)

                subscription = Subscription(
                    customer=customer,
                    plan=plan,
                    currency=currency,
                    billing_timing=plan.billing_timing,
                    current_period_start=now,
                    metadata=metadata or {},
                )
                if trial_days > 0:
                    subscription.status = SubscriptionStatus.TRIALING
                    subscription.trial_start = now
                    subscription.trial_end = now + timedelta(days=trial_days)
                    subscription.current_period_end = subscription.trial_end
                else:
                    subscription.current_period_end = period_end(now, plan.interval)
                subscription.save()

                generate_invoice = subscription.billing_timing == BillingTiming.IN_ADVANCE and trial_days == 0

                with billing_log_context(subscription_id=str(subscription.id), customer_id=str(customer.id)):
                    events.record_event(
                        events.SUBSCRIPTION_CREATED,
                        subscription,
                        {
                            "planId": str(plan.id),
                            "status": subscription.status,
                            "currency": currency,
                            "generateInvoice": generate_invoice,
                            "trialEnd": subscription.trial_end.isoformat() if subscription.trial_end else None,
                        },
                    )
                    if generate_invoice:
                        events.record_event(
                            events.INVOICE_GENERATION_REQUESTED,
                            subscription,
                            {
                                "reason": "subscription_created",
                                "periodStart": subscription.current_period_start.isoformat(),
                                "periodEnd": subscription.current_period_end.isoformat(),
                                "amount": str(price),
                                "currency": currency,
                            },
                        )

                    log_security_event(
                        event_type="subscription_created",
                        details={
                            "subscription_id": str(subscription.id),
                            "customer_id": str(customer.id),
                            "plan_id": str(plan.id),
                            "currency": currency,
                            "trial_days": trial_days,
                            "critical_financial_operation": True,
                        },
                    )
                    logger.info(
                        f"✅ [Subscription] Created {subscription.id} on plan {plan.code} ({subscription.status})"
                    )

                return Ok(subscription)

        except Plan.DoesNotExist:
            return Err(NotFound(f"Plan not found: {plan.pk}"))
        except BillingError as e:
            logger.warning(f"⚠️ [Subscription] Could not subscribe customer {customer.pk} to plan {plan.pk}: {e}")
            return Err(e)

    # =========================================================================
    # PAUSE / RESUME
    # =========================================================================

    @staticmethod
    def pause(subscription: Subscription, now: datetime | None = None) -> Result[Subscription, BillingError]:
        """ACTIVE → PAUSED. Billing periods are left untouched."""
        now = now or timezone.now()
        try:
            with transaction.atomic():
                locked = _lock(subscription)
                _apply(locked, SubscriptionAction.PAUSE)
                locked.paused_at = now
                locked.save()

                events.record_event(events.SUBSCRIPTION_PAUSED, locked, {"pausedAt": now.isoformat()})
                logger.info(f"⏸️ [Subscription] Paused {locked.id}")
                return Ok(locked)
        except BillingError as e:
            logger.warning(f"⚠️ [Subscription] Pause refused for {subscription.pk}: {e}")
            return Err(e)

    @staticmethod
    def resume(subscription: Subscription, now: datetime | None = None) -> Result[Subscription, BillingError]:
        """PAUSED → ACTIVE."""
        now = now or timezone.now()
        try:
            with transaction.atomic():
                locked = _lock(subscription)
                _apply(locked, SubscriptionAction.RESUME)
                locked.paused_at = None
                locked.save()

                events.record_event(events.SUBSCRIPTION_RESUMED, locked, {"resumedAt": now.isoformat()})
                logger.info(f"▶️ [Subscription] Resumed {locked.id}")
                return Ok(locked)
        except BillingError as e:
            logger.warning(f"⚠️ [Subscription] Resume refused for {subscription.pk}: {e}")
            return Err(e)

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    @staticmethod
    def cancel(
        subscription: Subscription,
        mode: CancelMode | str = "now",
        now: datetime | None = None,
    ) -> Result[Subscription, BillingError]:
        """
        Cancel immediately or at the end of the current period.

        Immediate cancellation credits the unused part of the period when
        the subscription has been invoiced before.
        """
        now = now or timezone.now()
        try:
            if mode not in CANCEL_MODES:
                raise ValidationError(f"must be one of {', '.join(CANCEL_MODES)}", field="mode")

            with transaction.atomic():
                locked = _lock(subscription)

                if mode == "period_end":
                    _apply(locked, SubscriptionAction.SCHEDULE_CANCEL)
                    locked.cancel_at = locked.current_period_end
                    locked.save()
                    events.record_event(
                        events.SUBSCRIPTION_CANCELED,
                        locked,
                        {"cancelAt": locked.cancel_at.isoformat()},
                    )
                    logger.info(f"🗓️ [Subscription] {locked.id} will cancel at {locked.cancel_at.isoformat()}")
                    return Ok(locked)

                _apply(locked, SubscriptionAction.CANCEL_NOW)
                # A plan without a price in this currency is credited as zero
                price_row = locked.plan.find_price(locked.currency)
                credit_note, proration = _issue_proration_credit(
                    locked,
                    price_row.amount if price_row else ZERO,
                    now,
                    {
                        "type": "cancellation_proration",
                        "planId": str(locked.plan_id),
                        "planName": locked.plan.name,
                    },
                )

                locked.canceled_at = now
                locked.scheduled_plan_change = None
                locked.save()

                events.record_event(
                    events.SUBSCRIPTION_CANCELED,
                    locked,
                    {"cancelAt": "immediate", **proration.to_metadata(), **_credit_payload(credit_note)},
                )
                log_security_event(
                    event_type="subscription_canceled",
                    details={
                        "subscription_id": str(locked.id),
                        "credit_note_id": str(credit_note.id) if credit_note else None,
                        "critical_financial_operation": True,
                    },
                )
                logger.info(f"🛑 [Subscription] Canceled {locked.id}")
                return Ok(locked)

        except BillingError as e:
            logger.warning(f"⚠️ [Subscription] Cancel ({mode}) refused for {subscription.pk}: {e}")
            return Err(e)

    # =========================================================================
    # PLAN CHANGES
    # =========================================================================

    @staticmethod
    def change_plan(
        subscription: Subscription,
        new_plan: Plan,
        now: datetime | None = None,
    ) -> Result[Subscription, BillingError]:
        """
        Move the subscription to ``new_plan``.

        A more expensive plan applies now: the unused part of the current
        period is credited and a fresh period starts. Cheaper or equally
        priced plans are scheduled for the end of the current period.
        """
        now = now or timezone.now()
        try:
            with transaction.atomic():
                locked = _lock(subscription)
                _apply(locked, SubscriptionAction.CHANGE_PLAN)

                new_plan = Plan.objects.get(pk=new_plan.pk)
                if new_plan.pk == locked.plan_id:
                    raise ValidationError("subscription is already on this plan", field="plan")

                new_price = new_plan.ensure_subscribable(locked.currency)
                old_plan = locked.plan
                old_price_row = old_plan.find_price(locked.currency)
                old_price = old_price_row.amount if old_price_row else ZERO

                if new_price > old_price:
                    credit_note, proration = _issue_proration_credit(
                        locked,
                        old_price,
                        now,
                        {
                            "type": "proration_credit",
                            "oldPlanId": str(old_plan.id),
                            "oldPlanName": old_plan.name,
                            "newPlanId": str(new_plan.id),
                        },
                    )

                    locked.previous_plan = old_plan
                    locked.plan = new_plan
                    locked.current_period_start = now
                    locked.current_period_end = period_end(now, new_plan.interval)
                    locked.scheduled_plan_change = None
                    locked.save()

                    events.record_event(
                        events.SUBSCRIPTION_PLAN_CHANGED,
                        locked,
                        {
                            "oldPlanId": str(old_plan.id),
                            "newPlanId": str(new_plan.id),
                            "proration": {
                                "oldPrice": str(old_price),
                                "newPrice": str(new_price),
                                **proration.to_metadata(),
                            },
                            **_credit_payload(credit_note),
                        },
                    )
                    log_security_event(
                        event_type="subscription_upgraded",
                        details={
                            "subscription_id": str(locked.id),
                            "old_plan_id": str(old_plan.id),
                            "new_plan_id": str(new_plan.id),
                            "credit_note_id": str(credit_note.id) if credit_note else None,
                            "critical_financial_operation": True,
                        },
                    )
                    logger.info(f"⬆️ [Subscription] {locked.id} upgraded {old_plan.code} -> {new_plan.code}")
                    return Ok(locked)

                change = ScheduledPlanChange(new_plan_id=new_plan.id, effective_at=locked.current_period_end)
                locked.previous_plan = old_plan
                locked.scheduled_plan_change = change
                locked.save()

                events.record_event(
                    events.SUBSCRIPTION_PLAN_CHANGE_SCHEDULED,
                    locked,
                    {"oldPlanId": str(old_plan.id), **change.to_payload()},
                )
                logger.info(
                    f"⬇️ [Subscription] {locked.id} will move {old_plan.code} -> {new_plan.code} "
                    f"at {change.effective_at.isoformat()}"
                )
                return Ok(locked)

        except Plan.DoesNotExist:
            return Err(NotFound(f"Plan not found: {new_plan.pk}"))
        except BillingError as e:
            logger.warning(f"⚠️ [Subscription] Plan change refused for {subscription.pk}: {e}")
            return Err(e)

    # =========================================================================
    # PERIOD-END CUTOVERS
    # =========================================================================

    @staticmethod
    def apply_scheduled_plan_change(
        subscription: Subscription,
        now: datetime | None = None,
    ) -> Result[Subscription, BillingError]:
        """Switch to the scheduled plan once its effective date has passed."""
        now = now or timezone.now()
        try:
            with transaction.atomic():
                locked = _lock(subscription)
                change = locked.scheduled_plan_change
                if change is None:
                    raise InvalidState("No plan change is scheduled", current_status=locked.status)
                if change.effective_at > now:
                    raise InvalidState(
                        f"Scheduled plan change is not due before {change.effective_at.isoformat()}",
                        current_status=locked.status,
                    )
                _apply(locked, SubscriptionAction.CHANGE_PLAN)

                try:
                    new_plan = Plan.objects.get(pk=change.new_plan_id)
                except Plan.DoesNotExist as e:
                    raise NotFound(f"Plan not found: {change.new_plan_id}") from e
                new_plan.ensure_subscribable(locked.currency)

                old_plan = locked.plan
                locked.previous_plan = old_plan
                locked.plan = new_plan
                locked.current_period_start = change.effective_at
                locked.current_period_end = period_end(change.effective_at, new_plan.interval)
                locked.scheduled_plan_change = None
                locked.save()

                events.record_event(
                    events.SUBSCRIPTION_PLAN_CHANGED,
                    locked,
                    {"oldPlanId": str(old_plan.id), "newPlanId": str(new_plan.id), "scheduled": True},
                )
                logger.info(f"🔁 [Subscription] Applied scheduled change {old_plan.code} -> {new_plan.code}")
                return Ok(locked)
        except BillingError as e:
            logger.warning(f"⚠️ [Subscription] Scheduled plan change failed for {subscription.pk}: {e}")
            return Err(e)

    @staticmethod
    def apply_scheduled_cancellation(
        subscription: Subscription,
        now: datetime | None = None,
    ) -> Result[Subscription, BillingError]:
        """Cancel a subscription whose ``cancel_at`` has passed. No credit is due."""
        now = now or timezone.now()
        try:
            with transaction.atomic():
                locked = _lock(subscription)
                if locked.cancel_at is None:
                    raise InvalidState("No cancellation is scheduled", current_status=locked.status)
                if locked.cancel_at > now:
                    raise InvalidState(
                        f"Cancellation is not due before {locked.cancel_at.isoformat()}",
                        current_status=locked.status,
                    )
                _apply(locked, SubscriptionAction.CANCEL_NOW)
                locked.canceled_at = locked.cancel_at
                locked.scheduled_plan_change = None
                locked.save()

                events.record_event(
                    events.SUBSCRIPTION_CANCELED,
                    locked,
                    {"cancelAt": locked.cancel_at.isoformat(), "scheduled": True},
                )
                logger.info(f"🛑 [Subscription] Scheduled cancellation applied to {locked.id}")
                return Ok(locked)
        except BillingError as e:
            logger.warning(f"⚠️ [Subscription] Scheduled cancellation failed for {subscription.pk}: {e}")
            return Err(e)

    @staticmethod
    def end_trial(subscription: Subscription, now: datetime | None = None) -> Result[Subscription, BillingError]:
        """TRIALING → ACTIVE once the trial is over; the first paid period starts at trial end."""
        now = now or timezone.now()
        try:
            with transaction.atomic():
                locked = _lock(subscription)
                if locked.trial_end is not None and locked.trial_end > now:
                    raise InvalidState(
                        f"Trial does not end before {locked.trial_end.isoformat()}",
                        current_status=locked.status,
                    )
                _apply(locked, SubscriptionAction.ACTIVATE_TRIAL)

                start = locked.trial_end or now
                locked.current_period_start = start
                locked.current_period_end = period_end(start, locked.plan.interval)
                locked.save()

                events.record_event(events.SUBSCRIPTION_TRIAL_ENDED, locked, {"trialEnd": start.isoformat()})
                if locked.billing_timing == BillingTiming.IN_ADVANCE:
                    events.record_event(
                        events.INVOICE_GENERATION_REQUESTED,
                        locked,
                        {
                            "reason": "trial_ended",
                            "periodStart": locked.current_period_start.isoformat(),
                            "periodEnd": locked.current_period_end.isoformat(),
                            "amount": str(locked.plan.price_for(locked.currency)),
                            "currency": locked.currency,
                        },
                    )
                logger.info(f"✅ [Subscription] Trial ended for {locked.id}")
                return Ok(locked)
        except BillingError as e:
            logger.warning(f"⚠️ [Subscription] Trial activation failed for {subscription.pk}: {e}")
            return Err(e)


__all__ = [
    "CANCEL_MODES",
    "SubscriptionService",
]
