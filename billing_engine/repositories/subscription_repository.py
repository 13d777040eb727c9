from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from billing_engine.models.subscription import LIVE_STATUSES, Subscription


class SubscriptionRepository:
    """Data access for subscriptions.

    Writes only flush; the calling service owns the transaction boundary.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, subscription_id: UUID) -> Subscription | None:
        return self.db.query(Subscription).filter(Subscription.id == subscription_id).first()

    def get_for_update(self, subscription_id: UUID) -> Subscription | None:
        """Serializing read of the current row state, refreshing any cached copy."""
        return (
            self.db.query(Subscription)
            .filter(Subscription.id == subscription_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def get_by_user_id(self, user_id: str) -> list[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.current_period_start.desc())
            .all()
        )

    def get_active_for_user(self, user_id: str) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status.in_(LIVE_STATUSES),
            )
            .order_by(Subscription.created_at.desc(), Subscription.current_period_start.desc())
            .first()
        )

    def get_due_for_renewal(self, as_of: datetime) -> list[Subscription]:
        """Live subscriptions whose current period has ended by ``as_of``."""
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.status.in_(LIVE_STATUSES),
                Subscription.current_period_end <= as_of,
            )
            .order_by(Subscription.current_period_end.asc())
            .all()
        )

    def create(self, subscription: Subscription) -> Subscription:
        self.db.add(subscription)
        self.db.flush()
        return subscription

    def update_versioned(
        self, subscription_id: UUID, expected_version: int, **values: Any
    ) -> bool:
        """Conditionally apply ``values`` and bump the version.

        Returns False when the row's version no longer matches
        ``expected_version`` (another writer got there first).
        """
        result = self.db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription_id,
                Subscription.version == expected_version,
            )
            .values(version=Subscription.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
