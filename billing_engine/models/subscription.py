from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, func

from billing_engine.core.database import Base
from billing_engine.models.shared import UUIDType, ensure_utc, generate_uuid


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


# Statuses that still grant access and are eligible for renewal.
LIVE_STATUSES = (
    SubscriptionStatus.TRIAL.value,
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PAST_DUE.value,
)


@dataclass(frozen=True)
class ScheduledChange:
    """A plan change deferred to the next renewal."""

    new_plan_id: UUID
    scheduled_at: datetime


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(String(255), nullable=False, index=True)
    plan_id = Column(
        UUIDType,
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status = Column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value, index=True)
    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=False, index=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=0)
    scheduled_plan_id = Column(
        UUIDType,
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=True,
    )
    scheduled_change_at = Column(DateTime(timezone=True), nullable=True)
    subscription_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def scheduled_change(self) -> ScheduledChange | None:
        if self.scheduled_plan_id is None or self.scheduled_change_at is None:
            return None
        return ScheduledChange(
            new_plan_id=self.scheduled_plan_id,  # type: ignore[arg-type]
            scheduled_at=ensure_utc(self.scheduled_change_at),  # type: ignore[arg-type]
        )
