# ===============================================================================
# PYTEST CONFIGURATION FOR THE BILLING CORE
# ===============================================================================
"""
Global test configuration.

Test Structure:
- tests/ mirrors apps/ structure for app-specific tests
- tests/factories/ holds model factories shared across apps

Settings come from ``config.settings.test`` (see ``[tool.pytest.ini_options]``).
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from tests.factories.billing_factories import PlanCreationRequest, create_customer, create_plan


@pytest.fixture
def now() -> datetime:
    """Start of a 30-day monthly period (April 2024)"""
    return datetime(2024, 4, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def customer(db):
    return create_customer()


@pytest.fixture
def basic_plan(db):
    """Monthly plan at 29.00 USD, billed in advance"""
    return create_plan(PlanCreationRequest(code="basic", name="Basic", prices={"USD": Decimal("29.00")}))


@pytest.fixture
def pro_plan(db):
    """Monthly plan at 79.00 USD / 70.00 EUR, billed in advance"""
    return create_plan(
        PlanCreationRequest(code="pro", name="Pro", prices={"USD": Decimal("79.00"), "EUR": Decimal("70.00")})
    )
