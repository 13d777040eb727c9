"""Billing period and trial date calculations."""

import calendar as cal
from datetime import datetime, timedelta

from billing_engine.models.plan import BillingPeriod


def _add_months(dt: datetime, months: int) -> datetime:
    """Add months to a datetime, clamping to last day of month."""
    month = dt.month - 1 + months
    year = dt.year + month // 12
    month = month % 12 + 1
    max_day = cal.monthrange(year, month)[1]
    day = min(dt.day, max_day)
    return dt.replace(year=year, month=month, day=day)


def add_billing_period(dt: datetime, billing_period: str) -> datetime:
    """Add one billing period to a datetime."""
    if billing_period == BillingPeriod.MONTHLY.value:
        return _add_months(dt, 1)
    elif billing_period == BillingPeriod.YEARLY.value:
        return _add_months(dt, 12)
    raise ValueError(f"Unknown billing period: {billing_period}")


def calculate_period(start: datetime, billing_period: str) -> tuple[datetime, datetime]:
    """Return (period_start, period_end) for a period beginning at ``start``."""
    return start, add_billing_period(start, billing_period)


def trial_end_date(start: datetime, trial_days: int) -> datetime | None:
    """Trial end for a subscription starting at ``start``, or None without a trial."""
    if trial_days <= 0:
        return None
    return start + timedelta(days=trial_days)
