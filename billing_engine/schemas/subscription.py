from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from billing_engine.models.subscription import SubscriptionStatus
from billing_engine.models.subscription_history import HistoryAction


class ScheduledChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    new_plan_id: UUID
    scheduled_at: datetime


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    user_id: str
    plan_id: UUID
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    trial_end: datetime | None
    cancel_at_period_end: bool
    canceled_at: datetime | None
    version: int
    scheduled_change: ScheduledChangeResponse | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, alias="subscription_metadata")
    created_at: datetime
    updated_at: datetime


class SubscriptionHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: UUID
    action: HistoryAction
    old_plan_id: UUID | None
    new_plan_id: UUID | None
    old_status: SubscriptionStatus | None
    new_status: SubscriptionStatus | None
    proration_amount: Decimal | None
    created_at: datetime
