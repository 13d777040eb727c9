"""Append-only audit trail of subscription mutations."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String

from billing_engine.core.database import Base
from billing_engine.models.shared import UUIDType, utc_now


class HistoryAction(str, Enum):
    CREATED = "created"
    PLAN_CHANGED = "plan_changed"
    CANCELED_IMMEDIATE = "canceled_immediate"
    CANCELED_AT_PERIOD_END = "canceled_at_period_end"
    REACTIVATED = "reactivated"
    RENEWED = "renewed"
    EXPIRED = "expired"
    PAST_DUE = "past_due"
    PAYMENT_RECOVERED = "payment_recovered"


class SubscriptionHistory(Base):
    """One row per successful subscription mutation. Never updated or removed."""

    __tablename__ = "subscription_history"
    __table_args__ = (
        Index("ix_subscription_history_subscription_id", "subscription_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    subscription_id = Column(
        UUIDType,
        ForeignKey("subscriptions.id", ondelete="RESTRICT"),
        nullable=False,
    )
    action = Column(String(50), nullable=False)
    old_plan_id = Column(UUIDType, nullable=True)
    new_plan_id = Column(UUIDType, nullable=True)
    old_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=True)
    proration_amount = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
