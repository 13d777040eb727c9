"""Proration calculations for mid-cycle plan changes, cancellations and starts.

All arithmetic is done in ``Decimal``. The time fraction is measured in whole
seconds, and every monetary result is rounded to cents with ``ROUND_HALF_UP``.
Net amounts are derived from the unrounded credit and charge so that the
rounding is applied exactly once.
"""

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from billing_engine.models.shared import ensure_utc, utc_now
from billing_engine.schemas.proration import ProrationCalculation

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class Priced(Protocol):
    price: Any


def round_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to cents, half away from zero."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _price(plan: Priced) -> Decimal:
    if isinstance(plan.price, Decimal):
        return plan.price
    return Decimal(str(plan.price))


def _whole_seconds(delta: timedelta) -> int:
    return int(delta.total_seconds())


def _whole_days(delta: timedelta) -> int:
    return int(delta / timedelta(days=1))


def _ratio(numerator: timedelta, period_start: datetime, period_end: datetime) -> Decimal:
    total_seconds = _whole_seconds(period_end - period_start)
    if total_seconds <= 0:
        raise ValueError("Billing period must end after it starts")
    return Decimal(_whole_seconds(numerator)) / Decimal(total_seconds)


def _normalize(
    period_start: datetime, period_end: datetime, at: datetime | None
) -> tuple[datetime, datetime, datetime]:
    return (
        ensure_utc(period_start),  # type: ignore[return-value]
        ensure_utc(period_end),
        ensure_utc(at) if at is not None else utc_now(),
    )


class ProrationCalculator:
    """Stateless calculator; safe to share between threads and services."""

    def calculate_proration(
        self,
        old_plan: Priced,
        new_plan: Priced,
        period_start: datetime,
        period_end: datetime,
        change_date: datetime | None = None,
    ) -> ProrationCalculation:
        """Credit for the unused part of the old plan and charge for the new one.

        ``change_date`` is not clamped to the period. Dates outside it
        produce ratios outside [0, 1].
        """
        period_start, period_end, change_date = _normalize(period_start, period_end, change_date)

        unused_ratio = _ratio(period_end - change_date, period_start, period_end)
        credit = _price(old_plan) * unused_ratio
        charge = _price(new_plan) * unused_ratio
        net = charge - credit

        calculation = ProrationCalculation(
            credit_amount=round_money(credit),
            charge_amount=round_money(charge),
            net_amount=round_money(net),
            days_remaining=_whole_days(period_end - change_date),
            days_in_period=_whole_days(period_end - period_start),
        )
        logger.debug(
            "Proration calculated: ratio=%s credit=%s charge=%s net=%s",
            unused_ratio,
            calculation.credit_amount,
            calculation.charge_amount,
            calculation.net_amount,
        )
        return calculation

    def calculate_cancellation_credit(
        self,
        plan: Priced,
        period_start: datetime,
        period_end: datetime,
        cancellation_date: datetime | None = None,
    ) -> Decimal:
        """Unused share of the plan price when canceling mid-period."""
        period_start, period_end, cancellation_date = _normalize(
            period_start, period_end, cancellation_date
        )
        unused_ratio = _ratio(period_end - cancellation_date, period_start, period_end)
        return round_money(_price(plan) * unused_ratio)

    def calculate_partial_period_charge(
        self,
        plan: Priced,
        period_start: datetime,
        period_end: datetime,
        subscription_start: datetime | None = None,
    ) -> Decimal:
        """Charge for a subscription that starts part-way through a period."""
        period_start, period_end, subscription_start = _normalize(
            period_start, period_end, subscription_start
        )
        usage_ratio = _ratio(period_end - subscription_start, period_start, period_end)
        return round_money(_price(plan) * usage_ratio)
