"""Tests for ProrationCalculator."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from billing_engine.services.proration import ProrationCalculator, round_money

START = datetime(2024, 4, 1, tzinfo=UTC)
END = datetime(2024, 5, 1, tzinfo=UTC)  # 30 days
MIDPOINT = datetime(2024, 4, 16, tzinfo=UTC)


def _plan(price: str) -> SimpleNamespace:
    return SimpleNamespace(price=Decimal(price))


@pytest.fixture
def calculator():
    return ProrationCalculator()


class TestRoundMoney:
    def test_half_up(self):
        assert round_money(Decimal("0.005")) == Decimal("0.01")
        assert round_money(Decimal("2.675")) == Decimal("2.68")

    def test_negative_half_away_from_zero(self):
        assert round_money(Decimal("-0.005")) == Decimal("-0.01")


class TestCalculateProration:
    def test_upgrade_at_midpoint(self, calculator):
        result = calculator.calculate_proration(_plan("30.00"), _plan("60.00"), START, END, MIDPOINT)

        assert result.credit_amount == Decimal("15.00")
        assert result.charge_amount == Decimal("30.00")
        assert result.net_amount == Decimal("15.00")
        assert result.days_remaining == 15
        assert result.days_in_period == 30

    def test_upgrade_day_15(self, calculator):
        result = calculator.calculate_proration(_plan("20.00"), _plan("50.00"), START, END, MIDPOINT)

        assert result.days_remaining == 15
        assert result.net_amount == Decimal("15.00")

    def test_downgrade_gives_negative_net(self, calculator):
        result = calculator.calculate_proration(_plan("60.00"), _plan("30.00"), START, END, MIDPOINT)

        assert result.net_amount == Decimal("-15.00")

    def test_change_at_period_start_is_full_difference(self, calculator):
        result = calculator.calculate_proration(_plan("10.00"), _plan("25.00"), START, END, START)

        assert result.credit_amount == Decimal("10.00")
        assert result.charge_amount == Decimal("25.00")
        assert result.net_amount == Decimal("15.00")

    def test_change_at_period_end_is_zero(self, calculator):
        result = calculator.calculate_proration(_plan("10.00"), _plan("25.00"), START, END, END)

        assert result.net_amount == Decimal("0.00")
        assert result.days_remaining == 0

    def test_net_is_rounded_once(self, calculator):
        # 1/3 of the period remaining: unrounded credit 3.3333, charge 6.6666
        change = START + timedelta(days=20)
        result = calculator.calculate_proration(_plan("10.00"), _plan("20.00"), START, END, change)

        assert result.credit_amount == Decimal("3.33")
        assert result.charge_amount == Decimal("6.67")
        assert result.net_amount == Decimal("3.33")

    def test_partial_days_truncated(self, calculator):
        change = MIDPOINT + timedelta(hours=12)
        result = calculator.calculate_proration(_plan("30.00"), _plan("60.00"), START, END, change)

        assert result.days_remaining == 14
        assert result.net_amount == Decimal("14.50")

    def test_naive_datetimes_are_treated_as_utc(self, calculator):
        result = calculator.calculate_proration(
            _plan("30.00"),
            _plan("60.00"),
            START.replace(tzinfo=None),
            END.replace(tzinfo=None),
            MIDPOINT,
        )

        assert result.net_amount == Decimal("15.00")

    def test_empty_period_rejected(self, calculator):
        with pytest.raises(ValueError, match="Billing period must end after it starts"):
            calculator.calculate_proration(_plan("10"), _plan("20"), START, START, START)

    def test_accepts_non_decimal_prices(self, calculator):
        result = calculator.calculate_proration(
            SimpleNamespace(price=30), SimpleNamespace(price="60.00"), START, END, MIDPOINT
        )

        assert result.net_amount == Decimal("15.00")


class TestCalculateCancellationCredit:
    def test_midpoint(self, calculator):
        assert calculator.calculate_cancellation_credit(
            _plan("30.00"), START, END, MIDPOINT
        ) == Decimal("15.00")

    def test_at_start_full_refund(self, calculator):
        assert calculator.calculate_cancellation_credit(_plan("30.00"), START, END, START) == Decimal(
            "30.00"
        )

    def test_inverted_period_rejected(self, calculator):
        with pytest.raises(ValueError):
            calculator.calculate_cancellation_credit(_plan("30.00"), END, START, MIDPOINT)


class TestCalculatePartialPeriodCharge:
    def test_start_mid_period(self, calculator):
        start = START + timedelta(days=10)
        assert calculator.calculate_partial_period_charge(
            _plan("30.00"), START, END, start
        ) == Decimal("20.00")

    def test_start_at_period_start(self, calculator):
        assert calculator.calculate_partial_period_charge(
            _plan("30.00"), START, END, START
        ) == Decimal("30.00")
