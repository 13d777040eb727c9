from decimal import Decimal
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from billing_engine.models.subscription_history import HistoryAction, SubscriptionHistory


class SubscriptionHistoryRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        subscription_id: UUID,
        action: HistoryAction,
        old_plan_id: UUID | None = None,
        new_plan_id: UUID | None = None,
        old_status: str | None = None,
        new_status: str | None = None,
        proration_amount: Decimal | None = None,
    ) -> SubscriptionHistory:
        """Append a history row inside the caller's transaction."""
        entry = SubscriptionHistory(
            subscription_id=subscription_id,
            action=action.value,
            old_plan_id=old_plan_id,
            new_plan_id=new_plan_id,
            old_status=old_status,
            new_status=new_status,
            proration_amount=proration_amount,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_by_subscription_id(self, subscription_id: UUID) -> list[SubscriptionHistory]:
        """Newest first."""
        return (
            self.db.query(SubscriptionHistory)
            .filter(SubscriptionHistory.subscription_id == subscription_id)
            .order_by(SubscriptionHistory.id.desc())
            .all()
        )

    def count(self, subscription_id: UUID) -> int:
        return (
            self.db.query(func.count(SubscriptionHistory.id))
            .filter(SubscriptionHistory.subscription_id == subscription_id)
            .scalar()
            or 0
        )
