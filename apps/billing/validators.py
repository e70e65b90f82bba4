"""
Financial validation functions for billing models.
Security-focused validation for tenant-supplied JSON and amounts.
"""

from __future__ import annotations

import json
import logging
import re
from decimal import Decimal
from typing import Any

from apps.common.validators import log_security_event

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "log_security_event",
    "validate_financial_amount",
    "validate_financial_json",
    "validate_min_amount_cents",
]

# ===============================================================================
# SECURITY VALIDATION CONSTANTS
# ===============================================================================

MAX_JSON_SIZE_BYTES = 5120  # 5KB limit for financial JSON fields
MAX_JSON_DEPTH = 5  # Maximum nesting depth for financial data
MAX_FINANCIAL_AMOUNT = Decimal("100000000")  # 100 million in major currency units
MAX_MIN_AMOUNT_CENTS = 10_000_000_000

# Dangerous patterns in financial metadata
DANGEROUS_FINANCIAL_PATTERNS = [
    r"eval\s*\(",
    r"exec\s*\(",
    r"__import__",
    r"<script",
    r"javascript:",
    r"\$\{.*\}",  # Template injection
]

# Sensitive keys that shouldn't be in financial metadata
SENSITIVE_FINANCIAL_KEYS = [
    "password",
    "secret",
    "token",
    "credential",
    "api_key",
    "card_number",
    "cvv",
    "account_number",
    "bank_account",
]

# ===============================================================================
# VALIDATION FUNCTIONS
# ===============================================================================


def validate_financial_json(data: Any, field_name: str = "metadata") -> None:
    """🔒 Validate a JSON bag (metadata, charge properties) before it is stored"""
    if not data:
        return

    try:
        json_str = json.dumps(data, default=str)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"contains invalid JSON: {e}", field=field_name) from e

    if len(json_str.encode("utf-8")) > MAX_JSON_SIZE_BYTES:
        raise ValidationError(f"too large, maximum size is {MAX_JSON_SIZE_BYTES} bytes", field=field_name)

    if _get_financial_json_depth(data) > MAX_JSON_DEPTH:
        raise ValidationError(f"too deep, maximum nesting depth is {MAX_JSON_DEPTH}", field=field_name)

    _check_financial_json_security(data, field_name)


def validate_financial_amount(amount: Decimal | None, field_name: str = "amount") -> None:
    """🔒 Reject negative or absurdly large monetary amounts"""
    if amount is None:
        return

    if amount < 0:
        raise ValidationError("must not be negative", field=field_name)

    if amount > MAX_FINANCIAL_AMOUNT:
        raise ValidationError(f"too large, maximum is {MAX_FINANCIAL_AMOUNT:,}", field=field_name)


def validate_min_amount_cents(min_amount_cents: int | None) -> None:
    if min_amount_cents is None:
        return
    if isinstance(min_amount_cents, bool) or not isinstance(min_amount_cents, int):
        raise ValidationError("must be an integer number of cents", field="min_amount_cents")
    if not 0 <= min_amount_cents <= MAX_MIN_AMOUNT_CENTS:
        raise ValidationError(f"must be between 0 and {MAX_MIN_AMOUNT_CENTS}", field="min_amount_cents")


# ===============================================================================
# INTERNAL HELPER FUNCTIONS
# ===============================================================================


def _get_financial_json_depth(data: Any, current_depth: int = 0) -> int:
    """Calculate the maximum depth of financial JSON data"""
    if current_depth > MAX_JSON_DEPTH:
        return current_depth

    if isinstance(data, dict):
        return max([_get_financial_json_depth(v, current_depth + 1) for v in data.values()], default=current_depth)
    elif isinstance(data, list):
        return max([_get_financial_json_depth(item, current_depth + 1) for item in data], default=current_depth)
    else:
        return current_depth


def _check_financial_json_security(data: Any, field_name: str) -> None:
    """Recursively check financial JSON data for security issues"""
    if isinstance(data, dict):
        for key in data:
            if any(sensitive in str(key).lower() for sensitive in SENSITIVE_FINANCIAL_KEYS):
                log_security_event(
                    "sensitive_key_rejected",
                    {"field": field_name, "key": str(key), "critical_financial_operation": True},
                )
                raise ValidationError(f"contains sensitive information in key '{key}'", field=field_name)

        for key, value in data.items():
            if isinstance(value, str):
                for pattern in DANGEROUS_FINANCIAL_PATTERNS:
                    if re.search(pattern, value, re.IGNORECASE):
                        raise ValidationError(f"contains potentially dangerous pattern in '{key}'", field=field_name)
            _check_financial_json_security(value, field_name)
    elif isinstance(data, list):
        for item in data:
            _check_financial_json_security(item, field_name)
