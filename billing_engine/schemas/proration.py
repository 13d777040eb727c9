"""Proration value objects."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class ProrationCalculation(BaseModel):
    """Result of a mid-cycle plan change calculation.

    A positive ``net_amount`` is owed by the customer, a negative one is
    credited back to them.
    """

    model_config = ConfigDict(frozen=True)

    credit_amount: Decimal
    charge_amount: Decimal
    net_amount: Decimal
    days_remaining: int
    days_in_period: int
