"""
Domain errors for the billing core.

Every error carries a stable ``code`` so callers (HTTP layer, schedulers)
can map them without string matching. None of them are retried inside the
core.
"""

from __future__ import annotations

from apps.common.types import BusinessError


class BillingError(BusinessError):
    """Base class for billing domain errors"""

    code = "billing_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFound(BillingError):
    """Referenced plan, subscription, customer, metric or charge does not exist"""

    code = "not_found"


class InvalidState(BillingError):
    """Transition attempted from a state that forbids it"""

    code = "invalid_state"

    def __init__(self, message: str, current_status: str | None = None, action: str | None = None) -> None:
        self.current_status = current_status
        self.action = action
        super().__init__(message)


class ConfigurationMismatch(BillingError):
    """Plan inactive or no price configured for the requested currency"""

    code = "configuration_mismatch"


class ValidationError(BillingError):
    """Invalid input: negative usage, malformed charge properties, broken ranges"""

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class ConfigurationError(BillingError):
    """Unrecognized configuration value such as an unknown billing interval"""

    code = "configuration_error"


__all__ = [
    "BillingError",
    "ConfigurationError",
    "ConfigurationMismatch",
    "InvalidState",
    "NotFound",
    "ValidationError",
]
