from uuid import UUID

from sqlalchemy.orm import Session

from billing_engine.models.plan import Plan
from billing_engine.schemas.plan import PlanCreate, PlanUpdate


class PlanRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_all(self, active_only: bool = True) -> list[Plan]:
        query = self.db.query(Plan)
        if active_only:
            query = query.filter(Plan.is_active.is_(True))
        return query.order_by(Plan.price.asc()).all()

    def get_by_id(self, plan_id: UUID) -> Plan | None:
        return self.db.query(Plan).filter(Plan.id == plan_id).first()

    def get_by_billing_period(self, billing_period: str, active_only: bool = True) -> list[Plan]:
        query = self.db.query(Plan).filter(Plan.billing_period == billing_period)
        if active_only:
            query = query.filter(Plan.is_active.is_(True))
        return query.order_by(Plan.price.asc()).all()

    def create(self, data: PlanCreate) -> Plan:
        plan = Plan(
            name=data.name,
            description=data.description,
            billing_period=data.billing_period.value,
            price=data.price,
            currency=data.currency,
            trial_days=data.trial_days,
            features=data.features,
            is_active=True,
        )
        self.db.add(plan)
        self.db.commit()
        self.db.refresh(plan)
        return plan

    def update(self, plan_id: UUID, data: PlanUpdate) -> Plan | None:
        plan = self.get_by_id(plan_id)
        if not plan:
            return None
        update_data = data.model_dump(exclude_unset=True)
        # Don't try to set NOT NULL columns to NULL
        for key, value in update_data.items():
            if value is None and key != "description":
                continue
            setattr(plan, key, value)
        self.db.commit()
        self.db.refresh(plan)
        return plan

    def deactivate(self, plan_id: UUID) -> Plan | None:
        """Soft-delete a plan. Plans are never removed once referenced."""
        plan = self.get_by_id(plan_id)
        if not plan:
            return None
        plan.is_active = False  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(plan)
        return plan
