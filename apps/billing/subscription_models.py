"""
Subscription model for the billing core.

Lifecycle: TRIALING → ACTIVE ⇄ PAUSED → CANCELED. The status column is only
written through ``Subscription.apply_transition``, which consults the
transition table in ``state_machine``. A save that changes the status any
other way is refused.

A deferred downgrade is kept as a typed ScheduledPlanChange stored in two
columns and applied by the period-end cutover.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

from django.db import models
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _

from apps.common.types import Result
from apps.common.validators import normalize_currency_code

from .exceptions import InvalidState, ValidationError
from .periods import BillingTiming
from .state_machine import SubscriptionAction, SubscriptionStatus, transition
from .validators import validate_financial_json

logger = logging.getLogger(__name__)

INITIAL_STATUSES = frozenset({SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE})


@dataclass(frozen=True)
class ScheduledPlanChange:
    """Plan switch deferred until ``effective_at`` (the end of the current period)."""

    new_plan_id: uuid.UUID
    effective_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {"newPlanId": str(self.new_plan_id), "effectiveAt": self.effective_at.isoformat()}


class Subscription(models.Model):
    """A customer's subscription to a plan, billed in a fixed currency."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    customer = models.ForeignKey(
        "customers.Customer",
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    plan = models.ForeignKey(
        "billing.Plan",
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    previous_plan = models.ForeignKey(
        "billing.Plan",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="previous_subscriptions",
        help_text=_("Plan in force before the last plan change"),
    )

    currency = models.CharField(max_length=3, help_text=_("Fixed at creation, upper-case ISO 4217"))
    billing_timing = models.CharField(
        max_length=20,
        choices=BillingTiming.choices,
        default=BillingTiming.IN_ADVANCE,
    )
    status = models.CharField(
        max_length=20,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.ACTIVE,
        db_index=True,
    )

    # Billing period tracking
    current_period_start = models.DateTimeField()
    current_period_end = models.DateTimeField(db_index=True)

    # Trial configuration
    trial_start = models.DateTimeField(null=True, blank=True)
    trial_end = models.DateTimeField(null=True, blank=True)

    # Lifecycle dates
    cancel_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text=_("Scheduled cancellation, normally the end of the current period"),
    )
    canceled_at = models.DateTimeField(null=True, blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)

    # Deferred plan change
    pending_plan = models.ForeignKey(
        "billing.Plan",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="scheduled_subscriptions",
    )
    pending_plan_effective_at = models.DateTimeField(null=True, blank=True, db_index=True)

    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Status as last read from / written to the database
    _persisted_status: str | None = None

    class Meta:
        db_table = "billing_subscriptions"
        verbose_name = _("Subscription")
        verbose_name_plural = _("Subscriptions")
        ordering = ("-created_at",)
        indexes = (models.Index(fields=["customer", "status"], name="subscription_customer_status"),)
        constraints: ClassVar[list] = [
            models.CheckConstraint(
                condition=Q(current_period_end__gt=F("current_period_start")),
                name="subscription_period_ordered",
            ),
            models.CheckConstraint(
                condition=Q(trial_start__isnull=True, trial_end__isnull=True)
                | Q(trial_start__isnull=False, trial_end__isnull=False),
                name="subscription_trial_bounds_paired",
            ),
            models.CheckConstraint(
                condition=Q(pending_plan__isnull=True, pending_plan_effective_at__isnull=True)
                | Q(pending_plan__isnull=False, pending_plan_effective_at__isnull=False),
                name="subscription_pending_change_paired",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.id} - {self.customer_id} ({self.status})"

    @classmethod
    def from_db(cls, db: str | None, field_names: Any, values: Any) -> Subscription:
        instance = super().from_db(db, field_names, values)
        instance._persisted_status = instance.__dict__.get("status")
        return instance

    def refresh_from_db(self, *args: Any, **kwargs: Any) -> None:
        super().refresh_from_db(*args, **kwargs)
        self._persisted_status = self.__dict__.get("status")

    def clean(self) -> None:
        """Validate subscription data."""
        super().clean()

        if self.current_period_start and self.current_period_end and self.current_period_end <= self.current_period_start:
            raise ValidationError("must be after current_period_start", field="current_period_end")

        if (self.trial_start is None) != (self.trial_end is None):
            raise ValidationError("trial_start and trial_end must be set together", field="trial_end")

        if (self.pending_plan_id is None) != (self.pending_plan_effective_at is None):
            raise ValidationError("plan and effective date must be set together", field="pending_plan")

        validate_financial_json(self.metadata, "metadata")

    def save(self, *args: Any, **kwargs: Any) -> None:
        """Refuse status changes that bypassed the state machine."""
        self.currency = normalize_currency_code(self.currency)

        if self._state.adding:
            if self.status not in INITIAL_STATUSES:
                raise InvalidState(
                    f"A subscription cannot be created in status {self.status}",
                    current_status=str(self.status),
                )
        elif self.status != self._persisted_status:
            raise InvalidState(
                f"Status change {self._persisted_status} -> {self.status} must go through apply_transition",
                current_status=self._persisted_status,
            )

        self.clean()
        super().save(*args, **kwargs)
        self._persisted_status = self.status

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def apply_transition(self, action: SubscriptionAction | str) -> Result[SubscriptionStatus, InvalidState]:
        """
        Move to the status the transition table gives for ``action``.

        The instance is updated in memory only; the caller saves it inside
        its transaction.
        """
        result = transition(self.status, action)
        if result.is_ok():
            new_status = result.unwrap()
            logger.debug(f"🔄 [Subscription] {self.id}: {self.status} --{action}--> {new_status}")
            self.status = new_status
            self._persisted_status = new_status
        return result

    # =========================================================================
    # SCHEDULED PLAN CHANGE
    # =========================================================================

    @property
    def scheduled_plan_change(self) -> ScheduledPlanChange | None:
        if self.pending_plan_id is None or self.pending_plan_effective_at is None:
            return None
        return ScheduledPlanChange(new_plan_id=self.pending_plan_id, effective_at=self.pending_plan_effective_at)

    @scheduled_plan_change.setter
    def scheduled_plan_change(self, change: ScheduledPlanChange | None) -> None:
        if change is None:
            self.pending_plan_id = None
            self.pending_plan_effective_at = None
        else:
            self.pending_plan_id = change.new_plan_id
            self.pending_plan_effective_at = change.effective_at

    # =========================================================================
    # STATUS PROPERTIES
    # =========================================================================

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED

    @property
    def is_trialing(self) -> bool:
        return self.status == SubscriptionStatus.TRIALING

    @property
    def has_trial(self) -> bool:
        return self.trial_end is not None
