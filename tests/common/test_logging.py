"""
Tests for correlation context logging in apps/common/logging.py.
"""

import logging

import pytest

from apps.common.logging import (
    BillingContextFilter,
    billing_log_context,
    clear_log_context,
    get_log_context,
    get_logger,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("apps.billing", logging.INFO, __file__, 1, "message", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _clean_context():
    clear_log_context()
    yield
    clear_log_context()


class TestBillingContextFilter:
    def test_missing_context_renders_dash(self):
        record = _record()

        assert BillingContextFilter().filter(record) is True
        assert record.subscription_id == "-"
        assert record.customer_id == "-"
        assert record.request_id == "-"

    def test_context_is_injected_and_restored(self):
        with billing_log_context(subscription_id="sub-1", customer_id="cus-1"):
            record = _record()
            BillingContextFilter().filter(record)
            assert record.subscription_id == "sub-1"
            assert record.customer_id == "cus-1"

            with billing_log_context(subscription_id="sub-2"):
                assert get_log_context()["subscription_id"] == "sub-2"
            assert get_log_context()["subscription_id"] == "sub-1"

        assert get_log_context()["subscription_id"] is None

    def test_explicit_record_values_win(self):
        with billing_log_context(request_id="req-ctx"):
            record = _record(request_id="req-explicit")
            BillingContextFilter().filter(record)

        assert record.request_id == "req-explicit"


class TestStructuredLogger:
    def test_keyword_context_moves_into_extra(self, caplog):
        logger = get_logger("apps.billing.tests", component="billing")

        with caplog.at_level(logging.INFO, logger="apps.billing.tests"):
            logger.info("Credit note issued", credit_note_id="cn-1")

        record = caplog.records[-1]
        assert record.component == "billing"
        assert record.credit_note_id == "cn-1"
