"""
Tests for the proration calculator (apps/billing/proration.py).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from apps.billing.exceptions import ValidationError
from apps.billing.proration import calculate_proration, days_between, prorate

START = datetime(2024, 1, 1, tzinfo=UTC)
END = START + timedelta(days=30)


class TestDaysBetween:
    def test_whole_days(self) -> None:
        assert days_between(START, END) == 30

    def test_rounds_half_up(self) -> None:
        assert days_between(START, START + timedelta(hours=11, minutes=59)) == 0
        assert days_between(START, START + timedelta(hours=12)) == 1
        assert days_between(START, START + timedelta(days=2, hours=13)) == 3

    def test_negative_spans_are_zero(self) -> None:
        assert days_between(END, START) == 0


class TestProrate:
    def test_period_fully_used_gives_zero(self) -> None:
        assert prorate(START, END, END, Decimal("300")) == Decimal("0")

    def test_nothing_used_gives_full_price(self) -> None:
        assert prorate(START, END, START, Decimal("300")) == Decimal("300")

    def test_ten_of_thirty_days_used(self) -> None:
        assert prorate(START, END, START + timedelta(days=10), Decimal("300")) == Decimal("200")

    def test_now_after_period_end_gives_zero(self) -> None:
        assert prorate(START, END, END + timedelta(days=5), Decimal("300")) == Decimal("0")

    def test_zero_length_period_gives_zero(self) -> None:
        assert prorate(START, START, START, Decimal("300")) == Decimal("0")

    def test_full_precision_is_kept(self) -> None:
        amount = prorate(START, END, START + timedelta(days=10), Decimal("29"))
        assert amount.quantize(Decimal("0.01")) == Decimal("19.33")
        assert amount != Decimal("19.33")

    def test_accepts_numeric_strings(self) -> None:
        assert prorate(START, END, START + timedelta(days=15), "100") == Decimal("50")

    def test_negative_price_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            prorate(START, END, START, Decimal("-1"))


class TestCalculateProration:
    def test_detail_for_credit_note_metadata(self) -> None:
        result = calculate_proration(START, END, START + timedelta(days=10), Decimal("300"))
        assert result.amount == Decimal("200")
        assert result.used_days == 10
        assert result.to_metadata() == {"remainingDays": 20, "totalDays": 30}
