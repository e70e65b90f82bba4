"""
Subscription status state machine.

Every status change goes through ``transition``. The table below is the
complete set of legal moves; anything not listed is an InvalidState.

    TRIALING --activate_trial--> ACTIVE
    TRIALING --cancel_now------> CANCELED
    TRIALING --schedule_cancel-> TRIALING
    TRIALING --change_plan-----> TRIALING
    ACTIVE   --pause-----------> PAUSED
    ACTIVE   --cancel_now------> CANCELED
    ACTIVE   --schedule_cancel-> ACTIVE
    ACTIVE   --change_plan-----> ACTIVE
    PAUSED   --resume----------> ACTIVE
    PAUSED   --cancel_now------> CANCELED
    PAUSED   --schedule_cancel-> PAUSED
    PAUSED   --change_plan-----> PAUSED

CANCELED is terminal.
"""

from __future__ import annotations

from django.db import models
from django.utils.translation import gettext_lazy as _

from apps.common.types import Err, Ok, Result

from .exceptions import InvalidState


class SubscriptionStatus(models.TextChoices):
    TRIALING = "TRIALING", _("Trialing")
    ACTIVE = "ACTIVE", _("Active")
    PAUSED = "PAUSED", _("Paused")
    CANCELED = "CANCELED", _("Canceled")


class SubscriptionAction(models.TextChoices):
    ACTIVATE_TRIAL = "activate_trial", _("Activate trial")
    PAUSE = "pause", _("Pause")
    RESUME = "resume", _("Resume")
    CANCEL_NOW = "cancel_now", _("Cancel immediately")
    SCHEDULE_CANCEL = "schedule_cancel", _("Cancel at period end")
    CHANGE_PLAN = "change_plan", _("Change plan")


_S = SubscriptionStatus
_A = SubscriptionAction

TRANSITIONS: dict[tuple[SubscriptionStatus, SubscriptionAction], SubscriptionStatus] = {
    (_S.TRIALING, _A.ACTIVATE_TRIAL): _S.ACTIVE,
    (_S.TRIALING, _A.CANCEL_NOW): _S.CANCELED,
    (_S.TRIALING, _A.SCHEDULE_CANCEL): _S.TRIALING,
    (_S.TRIALING, _A.CHANGE_PLAN): _S.TRIALING,
    (_S.ACTIVE, _A.PAUSE): _S.PAUSED,
    (_S.ACTIVE, _A.CANCEL_NOW): _S.CANCELED,
    (_S.ACTIVE, _A.SCHEDULE_CANCEL): _S.ACTIVE,
    (_S.ACTIVE, _A.CHANGE_PLAN): _S.ACTIVE,
    (_S.PAUSED, _A.RESUME): _S.ACTIVE,
    (_S.PAUSED, _A.CANCEL_NOW): _S.CANCELED,
    (_S.PAUSED, _A.SCHEDULE_CANCEL): _S.PAUSED,
    (_S.PAUSED, _A.CHANGE_PLAN): _S.PAUSED,
}

TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED})


def allowed_actions(status: SubscriptionStatus | str) -> list[SubscriptionAction]:
    return [action for (source, action) in TRANSITIONS if source == status]


def transition(
    status: SubscriptionStatus | str,
    action: SubscriptionAction | str,
) -> Result[SubscriptionStatus, InvalidState]:
    """Target status for ``action`` taken from ``status``, or InvalidState."""
    try:
        current = SubscriptionStatus(status)
        requested = SubscriptionAction(action)
    except ValueError:
        return Err(InvalidState(f"Unknown status/action {status!r}/{action!r}", str(status), str(action)))

    target = TRANSITIONS.get((current, requested))
    if target is None:
        return Err(
            InvalidState(
                f"Cannot {requested.value} a subscription in status {current.value}",
                current_status=current.value,
                action=requested.value,
            )
        )
    return Ok(target)


__all__ = [
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "SubscriptionAction",
    "SubscriptionStatus",
    "allowed_actions",
    "transition",
]
