"""
Centralized billing configuration.

All billing-related constants and configuration should be defined here
so that settings lookups and their validation live in one place.
"""

import logging
from decimal import Decimal

from django.conf import settings

from apps.common.validators import normalize_currency_code

logger = logging.getLogger(__name__)

# ===============================================================================
# HELPER: SAFE VALUE PARSING
# ===============================================================================


def _get_positive_int(setting_name: str, default: int) -> int:
    """Get a positive integer from settings with validation."""
    value = getattr(settings, setting_name, default)
    try:
        result = int(value)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ [Billing] Invalid {setting_name}={value!r}, using {default}")
        result = default
    return max(1, result)  # Ensure at least 1


def _get_bool(setting_name: str, default: bool) -> bool:
    value = getattr(settings, setting_name, default)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# ===============================================================================
# MONEY
# ===============================================================================


def get_default_currency() -> str:
    """Currency used when a caller does not specify one."""
    return normalize_currency_code(getattr(settings, "BILLING_DEFAULT_CURRENCY", "USD")) or "USD"


def get_money_quantum() -> Decimal:
    """Smallest persisted monetary unit, e.g. Decimal("0.01") for 2 decimal places."""
    places = _get_positive_int("BILLING_MONEY_DECIMAL_PLACES", 2)
    return Decimal(1).scaleb(-places)


# ===============================================================================
# DOMAIN EVENT OUTBOX
# ===============================================================================


def get_event_dispatch_batch_size() -> int:
    """Number of pending domain events handled per dispatcher run."""
    return _get_positive_int("BILLING_EVENT_DISPATCH_BATCH_SIZE", 100)


def get_event_max_attempts() -> int:
    """Delivery attempts before an event is parked as failed."""
    return _get_positive_int("BILLING_EVENT_MAX_ATTEMPTS", 5)


def dispatch_events_async() -> bool:
    """Whether committed transitions queue the outbox dispatcher on Django-Q2."""
    return _get_bool("BILLING_DISPATCH_EVENTS_ASYNC", True)
