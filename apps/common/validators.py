"""
Shared validation helpers and security-event logging for the billing platform.
"""

from __future__ import annotations

import logging
from typing import Any

from apps.common.logging import get_log_context

logger = logging.getLogger(__name__)

# Security event logs go to their own logger so they can be routed separately
security_logger = logging.getLogger("apps.security")


# ===============================================================================
# AUDIT LOGGING INTEGRATION
# ===============================================================================


def log_security_event(event_type: str, details: dict[str, Any], request_ip: str | None = None) -> None:
    """
    Log security events for monitoring and forensics
    """
    context = get_log_context()
    security_logger.warning(
        f"🚨 [Security] {event_type}: {details} from IP: {request_ip}",
        extra={"event_type": event_type, "request_id": context["request_id"] or "-"},
    )


def normalize_currency_code(code: str | None) -> str:
    """Upper-case and strip an ISO 4217 currency code ("usd " -> "USD")."""
    return (code or "").strip().upper()
