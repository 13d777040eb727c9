"""Read-mostly catalog of plan definitions."""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from billing_engine.core.exceptions import PlanNotFoundError
from billing_engine.models.plan import BillingPeriod, Plan
from billing_engine.repositories.plan_repository import PlanRepository
from billing_engine.schemas.plan import PlanCreate, PlanUpdate

logger = logging.getLogger(__name__)


class PlanCatalog:
    """Service for looking up and maintaining plans."""

    def __init__(self, db: Session):
        self.db = db
        self.plan_repo = PlanRepository(db)

    def get_plan_by_id(self, plan_id: UUID) -> Plan | None:
        """Get a plan by ID, including deactivated plans."""
        return self.plan_repo.get_by_id(plan_id)

    def require_plan(self, plan_id: UUID) -> Plan:
        plan = self.plan_repo.get_by_id(plan_id)
        if not plan:
            raise PlanNotFoundError(plan_id)
        return plan

    def get_all_plans(self) -> list[Plan]:
        """Active plans, cheapest first."""
        return self.plan_repo.get_all(active_only=True)

    def get_plans_by_period(self, billing_period: BillingPeriod | str) -> list[Plan]:
        """Active plans for one billing period, cheapest first."""
        period = BillingPeriod(billing_period).value
        return self.plan_repo.get_by_billing_period(period, active_only=True)

    def create_plan(self, data: PlanCreate) -> Plan:
        plan = self.plan_repo.create(data)
        logger.info("Plan created: %s (%s, %s)", plan.id, plan.billing_period, plan.price)
        return plan

    def update_plan(self, plan_id: UUID, data: PlanUpdate) -> Plan:
        plan = self.plan_repo.update(plan_id, data)
        if not plan:
            raise PlanNotFoundError(plan_id)
        return plan

    def deactivate_plan(self, plan_id: UUID) -> Plan:
        plan = self.plan_repo.deactivate(plan_id)
        if not plan:
            raise PlanNotFoundError(plan_id)
        logger.info("Plan deactivated: %s", plan_id)
        return plan

    def is_valid_plan_change(self, from_plan_id: UUID, to_plan_id: UUID) -> bool:
        """Plans must share a billing period for an in-place change."""
        from_plan = self.plan_repo.get_by_id(from_plan_id)
        to_plan = self.plan_repo.get_by_id(to_plan_id)
        if not from_plan or not to_plan:
            return False
        return str(from_plan.billing_period) == str(to_plan.billing_period)
