"""
Logging infrastructure for the billing platform.

- BillingContextFilter: injects correlation context (request id, subscription id)
  into every log record so a lifecycle transition can be followed across logs
- billing_log_context: context manager that scopes that correlation data
- StructuredLogAdapter / get_logger: structured context logging

Usage:
    from apps.common.logging import billing_log_context

    with billing_log_context(subscription_id=str(subscription.id)):
        logger.info("Subscription paused")
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Generator
from typing import Any

# Thread-local storage for log context
_log_context = threading.local()

CONTEXT_FIELDS = ("request_id", "subscription_id", "customer_id")


# =============================================================================
# CONTEXT FUNCTIONS
# =============================================================================


def set_log_context(**kwargs: Any) -> None:
    """Set log context for the current thread"""
    for key, value in kwargs.items():
        setattr(_log_context, key, value)


def get_log_context() -> dict[str, Any]:
    """Get log context for the current thread"""
    return {field: getattr(_log_context, field, None) for field in CONTEXT_FIELDS}


def clear_log_context() -> None:
    """Clear log context for the current thread"""
    for field in CONTEXT_FIELDS:
        if hasattr(_log_context, field):
            delattr(_log_context, field)


@contextlib.contextmanager
def billing_log_context(**kwargs: Any) -> Generator[None, None, None]:
    """Scope correlation fields to a block, restoring the previous values on exit."""
    previous = {key: getattr(_log_context, key, None) for key in kwargs}
    set_log_context(**kwargs)
    try:
        yield
    finally:
        set_log_context(**previous)


# =============================================================================
# CONTEXT FILTER
# =============================================================================


class BillingContextFilter(logging.Filter):
    """
    Add correlation context to log records.

    Missing values are rendered as "-" so format strings referencing
    them never fail.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, getattr(_log_context, field, None) or "-")
        return True


# =============================================================================
# STRUCTURED LOGGING
# =============================================================================


class StructuredLogAdapter(logging.LoggerAdapter):
    """
    Log adapter that adds structured context to all log messages.

    Usage:
        logger = StructuredLogAdapter(
            logging.getLogger(__name__),
            {"component": "billing"}
        )
        logger.info("Credit note issued", credit_note_id=123)
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Process log message and add structured context"""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)

        for key, value in list(kwargs.items()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = value
                del kwargs[key]

        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str, **context: Any) -> StructuredLogAdapter:
    """
    Get a structured logger with context.

    Args:
        name: Logger name (usually __name__)
        **context: Additional context to include in all log messages

    Returns:
        StructuredLogAdapter with context
    """
    return StructuredLogAdapter(logging.getLogger(name), context)
