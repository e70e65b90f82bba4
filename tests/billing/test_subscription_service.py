"""
Tests for apps/billing/subscription_service.py.

Covers:
- subscribe: trial vs. immediate activation, currency/plan validation,
  in-advance invoice request events
- pause / resume guards
- cancel now (proration credit) and at period end
- upgrade with credit note, downgrade scheduling and its cutover
- atomicity of failed transitions
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings

from apps.billing import events
from apps.billing.exceptions import ConfigurationMismatch, InvalidState, NotFound, ValidationError
from apps.billing.models import CreditNote, DomainEvent, PlanPrice, Subscription
from apps.billing.periods import BillingTiming
from apps.billing.state_machine import SubscriptionStatus
from apps.billing.subscription_models import ScheduledPlanChange
from apps.billing.subscription_service import SubscriptionService
from tests.factories.billing_factories import (
    PlanCreationRequest,
    create_customer,
    create_invoice,
    create_plan,
    create_subscription,
)

# April 2024 has 30 days, so one monthly period is exactly 30 days long
PERIOD_START = datetime(2024, 4, 1, 12, 0, tzinfo=UTC)
PERIOD_END = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
TEN_DAYS_IN = PERIOD_START + timedelta(days=10)


# ===============================================================================
# BASE TEST CASE WITH HELPERS
# ===============================================================================


class SubscriptionServiceTestBase(TestCase):
    """Base class providing a customer and a 29 USD / 79 USD plan pair."""

    def setUp(self) -> None:
        self.customer = create_customer()
        self.basic = create_plan(PlanCreationRequest(code="basic", name="Basic", prices={"USD": Decimal("29.00")}))
        self.pro = create_plan(
            PlanCreationRequest(code="pro", name="Pro", prices={"USD": Decimal("79.00"), "EUR": Decimal("70.00")})
        )

    def _subscribe(self, plan=None, **kwargs) -> Subscription:
        return create_subscription(self.customer, plan or self.basic, now=PERIOD_START, **kwargs)

    def _events(self, subscription: Subscription) -> list[str]:
        return list(
            DomainEvent.objects.filter(subscription=subscription).order_by("created_at", "id").values_list(
                "event_type", flat=True
            )
        )

    def _event(self, subscription: Subscription, event_type: str) -> DomainEvent:
        return DomainEvent.objects.filter(subscription=subscription, event_type=event_type).latest("created_at")


# ===============================================================================
# SUBSCRIBE
# ===============================================================================


class SubscribeTestCase(SubscriptionServiceTestBase):
    def test_subscribe_without_trial_is_active_for_one_period(self) -> None:
        result = SubscriptionService.subscribe(self.customer, self.basic, "usd", now=PERIOD_START)

        self.assertTrue(result.is_ok())
        subscription = result.unwrap()
        self.assertEqual(subscription.status, SubscriptionStatus.ACTIVE)
        self.assertEqual(subscription.currency, "USD")
        self.assertEqual(subscription.current_period_start, PERIOD_START)
        self.assertEqual(subscription.current_period_end, PERIOD_END)
        self.assertIsNone(subscription.trial_start)
        self.assertIsNone(subscription.trial_end)
        self.assertEqual(subscription.billing_timing, BillingTiming.IN_ADVANCE)

    def test_in_advance_subscription_requests_an_invoice(self) -> None:
        subscription = self._subscribe()

        self.assertEqual(
            self._events(subscription),
            [events.SUBSCRIPTION_CREATED, events.INVOICE_GENERATION_REQUESTED],
        )
        created = self._event(subscription, events.SUBSCRIPTION_CREATED)
        self.assertTrue(created.payload["generateInvoice"])
        self.assertEqual(created.payload["subscriptionId"], str(subscription.id))
        self.assertEqual(created.payload["customerId"], str(self.customer.id))
        self.assertEqual(created.status, DomainEvent.Status.PENDING)

        invoice_request = self._event(subscription, events.INVOICE_GENERATION_REQUESTED)
        self.assertEqual(invoice_request.payload["amount"], "29.00")

    def test_in_arrears_subscription_does_not_request_an_invoice(self) -> None:
        plan = create_plan(PlanCreationRequest(code="metered", billing_timing=BillingTiming.IN_ARREARS))
        subscription = self._subscribe(plan)

        self.assertEqual(subscription.billing_timing, BillingTiming.IN_ARREARS)
        self.assertEqual(self._events(subscription), [events.SUBSCRIPTION_CREATED])
        self.assertFalse(self._event(subscription, events.SUBSCRIPTION_CREATED).payload["generateInvoice"])

    def test_trial_subscription(self) -> None:
        subscription = self._subscribe(trial_days=14)

        self.assertEqual(subscription.status, SubscriptionStatus.TRIALING)
        self.assertEqual(subscription.trial_start, PERIOD_START)
        self.assertEqual(subscription.trial_end, PERIOD_START + timedelta(days=14))
        self.assertEqual(subscription.current_period_end, subscription.trial_end)
        self.assertTrue(subscription.is_trialing)
        self.assertTrue(subscription.has_trial)
        self.assertEqual(self._events(subscription), [events.SUBSCRIPTION_CREATED])

    def test_unknown_currency_is_configuration_mismatch(self) -> None:
        result = SubscriptionService.subscribe(self.customer, self.basic, "EUR", now=PERIOD_START)

        self.assertTrue(result.is_err())
        self.assertIsInstance(result.unwrap_err(), ConfigurationMismatch)
        self.assertFalse(Subscription.objects.exists())

    def test_inactive_plan_is_configuration_mismatch(self) -> None:
        retired = create_plan(PlanCreationRequest(code="retired", is_active=False))
        result = SubscriptionService.subscribe(self.customer, retired, "USD")
        self.assertIsInstance(result.unwrap_err(), ConfigurationMismatch)

    def test_negative_trial_days_rejected(self) -> None:
        result = SubscriptionService.subscribe(self.customer, self.basic, "USD", trial_days=-1)
        self.assertIsInstance(result.unwrap_err(), ValidationError)

    @override_settings(BILLING_DEFAULT_CURRENCY="eur")
    def test_currency_defaults_to_configured_currency(self) -> None:
        subscription = SubscriptionService.subscribe(self.customer, self.pro, now=PERIOD_START).unwrap()
        self.assertEqual(subscription.currency, "EUR")


# ===============================================================================
# PAUSE / RESUME
# ===============================================================================


class PauseResumeTestCase(SubscriptionServiceTestBase):
    def test_pause_and_resume_keep_periods(self) -> None:
        subscription = self._subscribe()

        paused = SubscriptionService.pause(subscription, now=TEN_DAYS_IN).unwrap()
        self.assertEqual(paused.status, SubscriptionStatus.PAUSED)
        self.assertEqual(paused.paused_at, TEN_DAYS_IN)
        self.assertEqual(paused.current_period_end, PERIOD_END)

        resumed = SubscriptionService.resume(paused).unwrap()
        self.assertEqual(resumed.status, SubscriptionStatus.ACTIVE)
        self.assertIsNone(resumed.paused_at)
        self.assertEqual(resumed.current_period_start, PERIOD_START)
        self.assertEqual(resumed.current_period_end, PERIOD_END)

        self.assertIn(events.SUBSCRIPTION_PAUSED, self._events(subscription))
        self.assertIn(events.SUBSCRIPTION_RESUMED, self._events(subscription))

    def test_pause_trialing_is_invalid_state(self) -> None:
        subscription = self._subscribe(trial_days=7)

        result = SubscriptionService.pause(subscription)

        self.assertIsInstance(result.unwrap_err(), InvalidState)
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, SubscriptionStatus.TRIALING)

    def test_resume_active_is_invalid_state(self) -> None:
        result = SubscriptionService.resume(self._subscribe())
        self.assertIsInstance(result.unwrap_err(), InvalidState)

    def test_pause_unknown_subscription_is_not_found(self) -> None:
        result = SubscriptionService.pause(Subscription(pk=uuid.uuid4()))
        self.assertIsInstance(result.unwrap_err(), NotFound)


# ===============================================================================
# CANCELLATION
# ===============================================================================


class CancelTestCase(SubscriptionServiceTestBase):
    def test_cancel_now_credits_unused_days(self) -> None:
        subscription = self._subscribe()
        invoice = create_invoice(subscription, issued_at=PERIOD_START)

        canceled = SubscriptionService.cancel(subscription, "now", now=TEN_DAYS_IN).unwrap()

        self.assertEqual(canceled.status, SubscriptionStatus.CANCELED)
        self.assertEqual(canceled.canceled_at, TEN_DAYS_IN)
        self.assertTrue(canceled.is_canceled)
        self.assertFalse(canceled.has_trial)

        credit_note = CreditNote.objects.get(invoice=invoice)
        self.assertEqual(credit_note.amount, Decimal("19.33"))
        self.assertEqual(credit_note.currency, "USD")
        self.assertEqual(credit_note.reason, CreditNote.Reason.ORDER_CHANGE)
        self.assertEqual(credit_note.status, CreditNote.Status.FINALIZED)
        self.assertEqual(credit_note.metadata["type"], "cancellation_proration")
        self.assertEqual(credit_note.metadata["planName"], "Basic")
        self.assertEqual(credit_note.metadata["remainingDays"], 20)
        self.assertEqual(credit_note.metadata["totalDays"], 30)

        event = self._event(subscription, events.SUBSCRIPTION_CANCELED)
        self.assertEqual(event.payload["cancelAt"], "immediate")
        self.assertEqual(event.payload["creditNoteId"], str(credit_note.id))

    def test_cancel_now_when_plan_lost_its_price_still_cancels(self) -> None:
        subscription = self._subscribe()
        create_invoice(subscription, issued_at=PERIOD_START)
        PlanPrice.objects.filter(plan=self.basic).delete()

        canceled = SubscriptionService.cancel(subscription, "now", now=TEN_DAYS_IN).unwrap()

        self.assertEqual(canceled.status, SubscriptionStatus.CANCELED)
        self.assertEqual(canceled.canceled_at, TEN_DAYS_IN)
        self.assertFalse(CreditNote.objects.exists())
        self.assertIn(events.SUBSCRIPTION_CANCELED, self._events(subscription))

    def test_cancel_now_without_invoice_issues_no_credit(self) -> None:
        subscription = self._subscribe()

        result = SubscriptionService.cancel(subscription, "now", now=TEN_DAYS_IN)

        self.assertTrue(result.is_ok())
        self.assertFalse(CreditNote.objects.exists())

    def test_cancel_now_at_period_end_issues_no_credit(self) -> None:
        subscription = self._subscribe()
        create_invoice(subscription, issued_at=PERIOD_START)

        SubscriptionService.cancel(subscription, "now", now=PERIOD_END).unwrap()

        self.assertFalse(CreditNote.objects.exists())

    def test_cancel_at_period_end_schedules_cancellation(self) -> None:
        subscription = self._subscribe()

        scheduled = SubscriptionService.cancel(subscription, "period_end", now=TEN_DAYS_IN).unwrap()

        self.assertEqual(scheduled.status, SubscriptionStatus.ACTIVE)
        self.assertEqual(scheduled.cancel_at, PERIOD_END)
        self.assertIsNone(scheduled.canceled_at)
        self.assertEqual(
            self._event(subscription, events.SUBSCRIPTION_CANCELED).payload["cancelAt"],
            PERIOD_END.isoformat(),
        )

    def test_scheduled_cancellation_cutover(self) -> None:
        subscription = self._subscribe()
        SubscriptionService.cancel(subscription, "period_end").unwrap()

        early = SubscriptionService.apply_scheduled_cancellation(subscription, now=TEN_DAYS_IN)
        self.assertIsInstance(early.unwrap_err(), InvalidState)

        canceled = SubscriptionService.apply_scheduled_cancellation(subscription, now=PERIOD_END).unwrap()
        self.assertEqual(canceled.status, SubscriptionStatus.CANCELED)
        self.assertEqual(canceled.canceled_at, PERIOD_END)

    def test_cancel_canceled_is_invalid_state_in_both_modes(self) -> None:
        subscription = self._subscribe()
        SubscriptionService.cancel(subscription, "now").unwrap()

        for mode in ("now", "period_end"):
            with self.subTest(mode=mode):
                result = SubscriptionService.cancel(subscription, mode)
                self.assertIsInstance(result.unwrap_err(), InvalidState)

    def test_unknown_mode_is_validation_error(self) -> None:
        result = SubscriptionService.cancel(self._subscribe(), "tomorrow")
        self.assertIsInstance(result.unwrap_err(), ValidationError)


# ===============================================================================
# PLAN CHANGES
# ===============================================================================


class ChangePlanTestCase(SubscriptionServiceTestBase):
    def test_upgrade_credits_old_plan_and_starts_fresh_period(self) -> None:
        subscription = self._subscribe(self.basic)
        invoice = create_invoice(subscription, issued_at=PERIOD_START)

        upgraded = SubscriptionService.change_plan(subscription, self.pro, now=TEN_DAYS_IN).unwrap()

        self.assertEqual(upgraded.plan, self.pro)
        self.assertEqual(upgraded.previous_plan, self.basic)
        self.assertEqual(upgraded.status, SubscriptionStatus.ACTIVE)
        self.assertEqual(upgraded.current_period_start, TEN_DAYS_IN)
        self.assertEqual(upgraded.current_period_end, datetime(2024, 5, 11, 12, 0, tzinfo=UTC))
        self.assertIsNone(upgraded.scheduled_plan_change)

        credit_note = CreditNote.objects.get(invoice=invoice)
        self.assertEqual(credit_note.amount, Decimal("19.33"))
        self.assertEqual(credit_note.metadata["type"], "proration_credit")
        self.assertEqual(credit_note.metadata["oldPlanId"], str(self.basic.id))
        self.assertEqual(credit_note.metadata["oldPlanName"], "Basic")
        self.assertEqual(credit_note.metadata["remainingDays"], 20)
        self.assertEqual(credit_note.metadata["totalDays"], 30)

        event = self._event(subscription, events.SUBSCRIPTION_PLAN_CHANGED)
        self.assertEqual(event.payload["oldPlanId"], str(self.basic.id))
        self.assertEqual(event.payload["newPlanId"], str(self.pro.id))

    def test_downgrade_is_scheduled_for_period_end(self) -> None:
        subscription = self._subscribe(self.pro)
        create_invoice(subscription, amount=Decimal("79.00"), issued_at=PERIOD_START)

        scheduled = SubscriptionService.change_plan(subscription, self.basic, now=TEN_DAYS_IN).unwrap()

        self.assertEqual(scheduled.plan, self.pro)
        self.assertEqual(scheduled.previous_plan, self.pro)
        self.assertEqual(scheduled.scheduled_plan_change, ScheduledPlanChange(self.basic.id, PERIOD_END))
        self.assertEqual(scheduled.current_period_end, PERIOD_END)
        self.assertFalse(CreditNote.objects.exists())

        event = self._event(subscription, events.SUBSCRIPTION_PLAN_CHANGE_SCHEDULED)
        self.assertEqual(event.payload["newPlanId"], str(self.basic.id))
        self.assertEqual(event.payload["effectiveAt"], PERIOD_END.isoformat())

    def test_scheduled_plan_change_cutover(self) -> None:
        subscription = self._subscribe(self.pro)
        SubscriptionService.change_plan(subscription, self.basic, now=TEN_DAYS_IN).unwrap()

        early = SubscriptionService.apply_scheduled_plan_change(subscription, now=TEN_DAYS_IN)
        self.assertIsInstance(early.unwrap_err(), InvalidState)

        switched = SubscriptionService.apply_scheduled_plan_change(subscription, now=PERIOD_END).unwrap()
        self.assertEqual(switched.plan, self.basic)
        self.assertEqual(switched.current_period_start, PERIOD_END)
        self.assertEqual(switched.current_period_end, datetime(2024, 6, 1, 12, 0, tzinfo=UTC))
        self.assertIsNone(switched.scheduled_plan_change)

    def test_upgrade_clears_pending_downgrade(self) -> None:
        premium = create_plan(PlanCreationRequest(code="premium", name="Premium", prices={"USD": Decimal("199.00")}))
        subscription = self._subscribe(self.pro)
        SubscriptionService.change_plan(subscription, self.basic, now=TEN_DAYS_IN).unwrap()

        upgraded = SubscriptionService.change_plan(subscription, premium, now=TEN_DAYS_IN).unwrap()

        self.assertEqual(upgraded.plan, premium)
        self.assertIsNone(upgraded.scheduled_plan_change)

    def test_missing_old_price_counts_as_zero(self) -> None:
        subscription = self._subscribe(self.basic)
        create_invoice(subscription, issued_at=PERIOD_START)
        PlanPrice.objects.filter(plan=self.basic).delete()

        upgraded = SubscriptionService.change_plan(subscription, self.pro, now=TEN_DAYS_IN).unwrap()

        self.assertEqual(upgraded.plan, self.pro)
        self.assertFalse(CreditNote.objects.exists())

    def test_new_plan_without_currency_price_is_mismatch(self) -> None:
        subscription = create_subscription(self.customer, self.pro, currency="EUR", now=PERIOD_START)

        result = SubscriptionService.change_plan(subscription, self.basic)

        self.assertIsInstance(result.unwrap_err(), ConfigurationMismatch)
        subscription.refresh_from_db()
        self.assertEqual(subscription.plan, self.pro)
        self.assertIsNone(subscription.scheduled_plan_change)

    def test_change_plan_on_canceled_is_invalid_state(self) -> None:
        subscription = self._subscribe()
        SubscriptionService.cancel(subscription, "now").unwrap()

        result = SubscriptionService.change_plan(subscription, self.pro)
        self.assertIsInstance(result.unwrap_err(), InvalidState)

    def test_change_to_current_plan_is_rejected(self) -> None:
        result = SubscriptionService.change_plan(self._subscribe(), self.basic)
        self.assertIsInstance(result.unwrap_err(), ValidationError)


# ===============================================================================
# TRIAL END
# ===============================================================================


class EndTrialTestCase(SubscriptionServiceTestBase):
    def test_trial_converts_to_first_paid_period(self) -> None:
        subscription = self._subscribe(trial_days=14)
        trial_end = PERIOD_START + timedelta(days=14)

        early = SubscriptionService.end_trial(subscription, now=PERIOD_START + timedelta(days=3))
        self.assertIsInstance(early.unwrap_err(), InvalidState)

        active = SubscriptionService.end_trial(subscription, now=trial_end).unwrap()
        self.assertEqual(active.status, SubscriptionStatus.ACTIVE)
        self.assertEqual(active.current_period_start, trial_end)
        self.assertIn(events.INVOICE_GENERATION_REQUESTED, self._events(subscription))

    def test_end_trial_on_active_is_invalid_state(self) -> None:
        result = SubscriptionService.end_trial(self._subscribe())
        self.assertIsInstance(result.unwrap_err(), InvalidState)


# ===============================================================================
# ATOMICITY
# ===============================================================================


class AtomicityTestCase(SubscriptionServiceTestBase):
    def test_failed_proration_aborts_cancellation(self) -> None:
        subscription = self._subscribe()
        create_invoice(subscription, issued_at=PERIOD_START)
        events_before = DomainEvent.objects.count()

        with patch(
            "apps.billing.subscription_service.calculate_proration",
            side_effect=ValidationError("must not be negative", field="period_price"),
        ):
            result = SubscriptionService.cancel(subscription, "now", now=TEN_DAYS_IN)

        self.assertIsInstance(result.unwrap_err(), ValidationError)
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, SubscriptionStatus.ACTIVE)
        self.assertIsNone(subscription.canceled_at)
        self.assertFalse(CreditNote.objects.exists())
        self.assertEqual(DomainEvent.objects.count(), events_before)

    def test_unexpected_error_propagates_and_rolls_back(self) -> None:
        subscription = self._subscribe()
        create_invoice(subscription, issued_at=PERIOD_START)

        with (
            patch("apps.billing.events.record_event", side_effect=RuntimeError("outbox down")),
            self.assertRaises(RuntimeError),
        ):
            SubscriptionService.change_plan(subscription, self.pro, now=TEN_DAYS_IN)

        subscription.refresh_from_db()
        self.assertEqual(subscription.plan, self.basic)
        self.assertFalse(CreditNote.objects.exists())


# ===============================================================================
# LOOKUPS
# ===============================================================================


class LookupTestCase(SubscriptionServiceTestBase):
    def test_lookups_return_not_found(self) -> None:
        self.assertIsInstance(SubscriptionService.get_subscription(uuid.uuid4()).unwrap_err(), NotFound)
        self.assertIsInstance(SubscriptionService.get_plan("not-a-uuid").unwrap_err(), NotFound)
        self.assertIsInstance(SubscriptionService.get_customer(uuid.uuid4()).unwrap_err(), NotFound)

    def test_lookups_return_objects(self) -> None:
        subscription = self._subscribe()
        self.assertEqual(SubscriptionService.get_subscription(subscription.id).unwrap(), subscription)
        self.assertEqual(SubscriptionService.get_plan(self.basic.id).unwrap(), self.basic)
        self.assertEqual(SubscriptionService.get_customer(str(self.customer.id)).unwrap(), self.customer)
