"""Subscription lifecycle: creation, plan changes, cancellation, reactivation, renewal.

Every mutation is a single unit of work: a serializing read of the row, a
version-guarded conditional update and a history append, committed together.
A lost race surfaces as ``OptimisticLockError``; retrying is up to the caller.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from billing_engine.core.database import transaction
from billing_engine.core.exceptions import (
    IncompatibleBillingPeriodError,
    InvalidStateError,
    OptimisticLockError,
    SubscriptionNotFoundError,
)
from billing_engine.models.shared import ensure_utc, utc_now
from billing_engine.models.subscription import Subscription, SubscriptionStatus
from billing_engine.models.subscription_history import HistoryAction, SubscriptionHistory
from billing_engine.repositories.subscription_history_repository import (
    SubscriptionHistoryRepository,
)
from billing_engine.repositories.subscription_repository import SubscriptionRepository
from billing_engine.schemas.proration import ProrationCalculation
from billing_engine.services.plan_catalog import PlanCatalog
from billing_engine.services.proration import ProrationCalculator
from billing_engine.services.subscription_dates import (
    add_billing_period,
    calculate_period,
    trial_end_date,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass
class PlanChangeResult:
    """Outcome of ``change_plan``. ``proration`` is None for deferred changes."""

    subscription: Subscription
    proration_amount: Decimal
    proration: ProrationCalculation | None = None


class SubscriptionManager:
    """Service owning the Subscription aggregate."""

    def __init__(
        self,
        db: Session,
        plan_catalog: PlanCatalog | None = None,
        proration: ProrationCalculator | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.subscription_repo = SubscriptionRepository(db)
        self.history_repo = SubscriptionHistoryRepository(db)
        self.plan_catalog = plan_catalog or PlanCatalog(db)
        self.proration = proration or ProrationCalculator()
        self.clock = clock

    # ── Queries ────────────────────────────────────────────────────────

    def get_subscription_by_id(self, subscription_id: UUID) -> Subscription | None:
        return self.subscription_repo.get_by_id(subscription_id)

    def require_subscription(self, subscription_id: UUID) -> Subscription:
        subscription = self.subscription_repo.get_by_id(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    def get_active_subscription(self, user_id: str) -> Subscription | None:
        """Latest subscription in trial, active or past_due status."""
        return self.subscription_repo.get_active_for_user(user_id)

    def get_user_subscriptions(self, user_id: str) -> list[Subscription]:
        return self.subscription_repo.get_by_user_id(user_id)

    def get_subscription_history(self, subscription_id: UUID) -> list[SubscriptionHistory]:
        return self.history_repo.get_by_subscription_id(subscription_id)

    def get_subscriptions_due_for_renewal(self, as_of: datetime | None = None) -> list[Subscription]:
        as_of = ensure_utc(as_of) if as_of is not None else self._now()
        return self.subscription_repo.get_due_for_renewal(as_of)

    # ── Mutations ──────────────────────────────────────────────────────

    def create_subscription(
        self,
        user_id: str,
        plan_id: UUID,
        start_date: datetime | None = None,
    ) -> Subscription:
        """Start a subscription, in trial when the plan has trial days."""
        start = ensure_utc(start_date) if start_date is not None else self._now()

        with transaction(self.db):
            plan = self.plan_catalog.require_plan(plan_id)
            if not plan.is_active:
                raise InvalidStateError(f"Plan {plan_id} is not active")

            period_start, period_end = calculate_period(start, str(plan.billing_period))  # type: ignore[arg-type]
            trial_end = trial_end_date(start, int(plan.trial_days))  # type: ignore[arg-type]
            status = SubscriptionStatus.TRIAL if trial_end else SubscriptionStatus.ACTIVE

            subscription = self.subscription_repo.create(
                Subscription(
                    user_id=user_id,
                    plan_id=plan.id,
                    status=status.value,
                    current_period_start=period_start,
                    current_period_end=period_end,
                    trial_end=trial_end,
                    cancel_at_period_end=False,
                    version=0,
                    subscription_metadata={},
                )
            )
            self.history_repo.create(
                subscription.id,  # type: ignore[arg-type]
                HistoryAction.CREATED,
                new_plan_id=plan.id,  # type: ignore[arg-type]
                new_status=status.value,
            )

        self.db.refresh(subscription)
        logger.info(
            "Subscription created: %s (user=%s, plan=%s, status=%s)",
            subscription.id,
            user_id,
            plan_id,
            subscription.status,
        )
        return subscription

    def change_plan(
        self,
        subscription_id: UUID,
        new_plan_id: UUID,
        immediate: bool = True,
    ) -> PlanChangeResult:
        """Move a subscription to another plan with the same billing period.

        Immediate changes switch the plan now and report the prorated net
        amount. Deferred changes are scheduled and applied at the next renewal.
        """
        now = self._now()
        proration: ProrationCalculation | None = None

        with transaction(self.db):
            subscription = self._lock(subscription_id)
            expected_version = int(subscription.version)  # type: ignore[arg-type]

            if subscription.status == SubscriptionStatus.CANCELED.value:
                raise InvalidStateError("Cannot change the plan of a canceled subscription")

            old_plan = self.plan_catalog.require_plan(subscription.plan_id)  # type: ignore[arg-type]
            new_plan = self.plan_catalog.require_plan(new_plan_id)
            if not new_plan.is_active:
                raise InvalidStateError(f"Plan {new_plan_id} is not active")
            if str(old_plan.id) == str(new_plan.id):
                raise InvalidStateError("New plan must be different from current plan")
            if old_plan.billing_period != new_plan.billing_period:
                raise IncompatibleBillingPeriodError(
                    str(old_plan.billing_period), str(new_plan.billing_period)
                )

            if immediate:
                proration = self.proration.calculate_proration(
                    old_plan,
                    new_plan,
                    subscription.current_period_start,  # type: ignore[arg-type]
                    subscription.current_period_end,  # type: ignore[arg-type]
                    now,
                )
                self._apply(
                    subscription,
                    expected_version,
                    HistoryAction.PLAN_CHANGED,
                    old_plan_id=old_plan.id,
                    new_plan_id=new_plan.id,
                    proration_amount=proration.net_amount,
                    values={
                        "plan_id": new_plan.id,
                        "scheduled_plan_id": None,
                        "scheduled_change_at": None,
                    },
                )
            else:
                self._apply(
                    subscription,
                    expected_version,
                    HistoryAction.PLAN_CHANGED,
                    old_plan_id=old_plan.id,
                    new_plan_id=new_plan.id,
                    proration_amount=ZERO,
                    values={
                        "scheduled_plan_id": new_plan.id,
                        "scheduled_change_at": now,
                    },
                )

        self.db.refresh(subscription)
        proration_amount = proration.net_amount if proration else ZERO
        logger.info(
            "Subscription %s plan change to %s (%s), proration=%s",
            subscription_id,
            new_plan_id,
            "immediate" if immediate else "at renewal",
            proration_amount,
        )
        return PlanChangeResult(
            subscription=subscription,
            proration_amount=proration_amount,
            proration=proration,
        )

    def cancel_subscription(self, subscription_id: UUID, immediate: bool = False) -> Subscription:
        """Cancel now, or flag the subscription to end with its current period."""
        now = self._now()

        with transaction(self.db):
            subscription = self._lock(subscription_id)
            expected_version = int(subscription.version)  # type: ignore[arg-type]

            if subscription.status == SubscriptionStatus.CANCELED.value:
                raise InvalidStateError("Subscription is already canceled")

            if immediate:
                self._apply(
                    subscription,
                    expected_version,
                    HistoryAction.CANCELED_IMMEDIATE,
                    old_plan_id=subscription.plan_id,
                    new_status=SubscriptionStatus.CANCELED.value,
                    values={
                        "status": SubscriptionStatus.CANCELED.value,
                        "canceled_at": now,
                        "cancel_at_period_end": False,
                        "scheduled_plan_id": None,
                        "scheduled_change_at": None,
                    },
                )
            else:
                # Status is left as-is; renewal finalizes the cancellation.
                self._apply(
                    subscription,
                    expected_version,
                    HistoryAction.CANCELED_AT_PERIOD_END,
                    old_plan_id=subscription.plan_id,
                    values={
                        "cancel_at_period_end": True,
                        "canceled_at": now,
                    },
                )

        self.db.refresh(subscription)
        logger.info(
            "Subscription %s canceled (%s)",
            subscription_id,
            "immediately" if immediate else "at period end",
        )
        return subscription

    def reactivate_subscription(self, subscription_id: UUID) -> Subscription:
        """Undo a cancellation. Always lands in active status, ending any trial."""
        with transaction(self.db):
            subscription = self._lock(subscription_id)
            expected_version = int(subscription.version)  # type: ignore[arg-type]
            self._apply(
                subscription,
                expected_version,
                HistoryAction.REACTIVATED,
                old_plan_id=subscription.plan_id,
                new_plan_id=subscription.plan_id,
                new_status=SubscriptionStatus.ACTIVE.value,
                values={
                    "cancel_at_period_end": False,
                    "canceled_at": None,
                    "status": SubscriptionStatus.ACTIVE.value,
                },
            )

        self.db.refresh(subscription)
        logger.info("Subscription %s reactivated", subscription_id)
        return subscription

    def renew_subscription(self, subscription_id: UUID) -> Subscription:
        """Roll the subscription into its next billing period.

        A subscription flagged ``cancel_at_period_end`` is canceled instead of
        renewed. A scheduled plan change takes effect with the new period.
        """
        with transaction(self.db):
            subscription = self._lock(subscription_id)
            expected_version = int(subscription.version)  # type: ignore[arg-type]

            if subscription.status == SubscriptionStatus.CANCELED.value:
                raise InvalidStateError("Cannot renew a canceled subscription")

            if subscription.cancel_at_period_end:
                self._apply(
                    subscription,
                    expected_version,
                    HistoryAction.EXPIRED,
                    old_plan_id=subscription.plan_id,
                    new_status=SubscriptionStatus.CANCELED.value,
                    values={
                        "status": SubscriptionStatus.CANCELED.value,
                        "scheduled_plan_id": None,
                        "scheduled_change_at": None,
                    },
                )
                renewed = False
            else:
                plan = self.plan_catalog.require_plan(subscription.plan_id)  # type: ignore[arg-type]
                scheduled = subscription.scheduled_change
                if scheduled:
                    scheduled_plan = self.plan_catalog.require_plan(scheduled.new_plan_id)
                    if scheduled_plan.is_active:
                        plan = scheduled_plan
                    else:
                        logger.warning(
                            "Scheduled plan %s for subscription %s is no longer active; "
                            "renewing on current plan",
                            scheduled.new_plan_id,
                            subscription_id,
                        )
                period_start = ensure_utc(subscription.current_period_end)  # type: ignore[arg-type]
                period_end = add_billing_period(period_start, str(plan.billing_period))  # type: ignore[arg-type]
                self._apply(
                    subscription,
                    expected_version,
                    HistoryAction.RENEWED,
                    old_plan_id=subscription.plan_id,
                    new_plan_id=plan.id,
                    new_status=SubscriptionStatus.ACTIVE.value,
                    values={
                        "plan_id": plan.id,
                        "current_period_start": period_start,
                        "current_period_end": period_end,
                        "status": SubscriptionStatus.ACTIVE.value,
                        "scheduled_plan_id": None,
                        "scheduled_change_at": None,
                    },
                )
                renewed = True

        self.db.refresh(subscription)
        if renewed:
            logger.info(
                "Subscription %s renewed until %s", subscription_id, subscription.current_period_end
            )
        else:
            logger.info("Subscription %s canceled at period end", subscription_id)
        return subscription

    def mark_past_due(self, subscription_id: UUID) -> Subscription:
        """Flag a trial/active subscription whose payment could not be collected."""
        return self._transition_status(
            subscription_id,
            from_statuses=(SubscriptionStatus.TRIAL.value, SubscriptionStatus.ACTIVE.value),
            to_status=SubscriptionStatus.PAST_DUE,
            action=HistoryAction.PAST_DUE,
        )

    def recover_from_past_due(self, subscription_id: UUID) -> Subscription:
        """Return a past_due subscription to active after a successful payment."""
        return self._transition_status(
            subscription_id,
            from_statuses=(SubscriptionStatus.PAST_DUE.value,),
            to_status=SubscriptionStatus.ACTIVE,
            action=HistoryAction.PAYMENT_RECOVERED,
        )

    def renew_due_subscriptions(self, as_of: datetime | None = None) -> int:
        """Renew every subscription whose period has ended.

        Rows are handled one at a time; a failure is logged and the sweep
        moves on.
        """
        due = self.get_subscriptions_due_for_renewal(as_of)
        renewed = 0
        for subscription in due:
            subscription_id = subscription.id
            try:
                self.renew_subscription(subscription_id)  # type: ignore[arg-type]
                renewed += 1
            except Exception:
                logger.exception("Failed to renew subscription %s", subscription_id)
        logger.info("Renewal sweep processed %d of %d due subscriptions", renewed, len(due))
        return renewed

    # ── Internals ──────────────────────────────────────────────────────

    def _now(self) -> datetime:
        return ensure_utc(self.clock())  # type: ignore[return-value]

    def _lock(self, subscription_id: UUID) -> Subscription:
        subscription = self.subscription_repo.get_for_update(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    def _apply(
        self,
        subscription: Subscription,
        expected_version: int,
        action: HistoryAction,
        values: dict[str, Any],
        old_plan_id: Any = None,
        new_plan_id: Any = None,
        new_status: str | None = None,
        proration_amount: Decimal | None = None,
    ) -> None:
        """Version-guarded update plus its history row, in the open transaction."""
        old_status = str(subscription.status)
        if not self.subscription_repo.update_versioned(
            subscription.id,  # type: ignore[arg-type]
            expected_version,
            **values,
        ):
            raise OptimisticLockError(subscription.id, expected_version)  # type: ignore[arg-type]
        self.history_repo.create(
            subscription.id,  # type: ignore[arg-type]
            action,
            old_plan_id=old_plan_id,
            new_plan_id=new_plan_id,
            old_status=old_status,
            new_status=new_status or old_status,
            proration_amount=proration_amount,
        )

    def _transition_status(
        self,
        subscription_id: UUID,
        from_statuses: tuple[str, ...],
        to_status: SubscriptionStatus,
        action: HistoryAction,
    ) -> Subscription:
        with transaction(self.db):
            subscription = self._lock(subscription_id)
            if subscription.status not in from_statuses:
                return subscription
            expected_version = int(subscription.version)  # type: ignore[arg-type]
            self._apply(
                subscription,
                expected_version,
                action,
                old_plan_id=subscription.plan_id,
                new_plan_id=subscription.plan_id,
                new_status=to_status.value,
                values={"status": to_status.value},
            )

        self.db.refresh(subscription)
        logger.info("Subscription %s moved to %s", subscription_id, to_status.value)
        return subscription
