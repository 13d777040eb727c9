"""Shared test fixtures for all test modules."""

import contextlib
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from billing_engine.core import database as db_module
from billing_engine.core.database import Base, get_db
from billing_engine.models import Plan
from billing_engine.models.plan import BillingPeriod
from billing_engine.models.payment import Payment
from billing_engine.services.payment_gateway import GatewayResult, PaymentGateway

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

TEST_USER_ID = "user-0001"


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and delete all rows after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


class FrozenClock:
    """Settable clock passed to services in place of ``utc_now``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class ScriptedGateway(PaymentGateway):
    """Gateway returning queued results in order; the last one repeats."""

    def __init__(self, *results: GatewayResult | Exception):
        self.results = list(results) or [GatewayResult.succeeded("txn_test")]
        self.calls: list[Payment] = []

    @property
    def name(self) -> str:
        return "scripted"

    def submit(self, payment: Payment) -> GatewayResult:
        self.calls.append(payment)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def make_plan(
    db: Session,
    name: str = "Basic",
    price: str = "10.00",
    billing_period: BillingPeriod = BillingPeriod.MONTHLY,
    trial_days: int = 0,
    is_active: bool = True,
) -> Plan:
    plan = Plan(
        name=name,
        billing_period=billing_period.value,
        price=Decimal(price),
        currency="USD",
        trial_days=trial_days,
        features={},
        is_active=is_active,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 4, 16, tzinfo=UTC))


@pytest.fixture
def plan_factory(db_session) -> Callable[..., Plan]:
    def _factory(**kwargs) -> Plan:
        return make_plan(db_session, **kwargs)

    return _factory
