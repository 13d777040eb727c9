from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from billing_engine.models.plan import BillingPeriod


class PlanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    billing_period: BillingPeriod
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    trial_days: int = Field(default=0, ge=0)
    features: dict[str, Any] = Field(default_factory=dict)


class PlanUpdate(BaseModel):
    """Mutable plan attributes. The billing period is fixed at creation."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    price: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    trial_days: int | None = Field(default=None, ge=0)
    features: dict[str, Any] | None = None
    is_active: bool | None = None


class PlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None = None
    billing_period: BillingPeriod
    price: Decimal
    currency: str
    trial_days: int
    features: dict[str, Any]
    is_active: bool
    created_at: datetime
    updated_at: datetime
