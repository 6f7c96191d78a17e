import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'restaurant_ops' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from restaurant_ops.main import app  # type: ignore
from restaurant_ops.database import Base  # type: ignore
from restaurant_ops.api import deps  # type: ignore
"""Pytest fixtures and factories.

All model modules are imported before Base.metadata.create_all() so every table
and relationship target is registered.
"""
from restaurant_ops.models.db import Order, OrderItem, Product, PhoneNumber, OrderStatus
from restaurant_ops.jobs.lease_store import InMemoryLeaseStore
from restaurant_ops.jobs.leader_election import LeaderElectionGate
from restaurant_ops.jobs.scheduler import ReconciliationScheduler
from restaurant_ops.jobs.sweeps import register_default_sweeps
from restaurant_ops.utils.metrics import GLOBAL_SWEEP_METRICS, SweepMetrics
from restaurant_ops.utils.time import utc_now

# File-based SQLite: sweeps open their own sessions (and may run on scheduler
# threads), so every connection must see the same database.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_sweeps.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Sweep actions look up SessionLocal on the database module at call time.
import restaurant_ops.database as _app_database  # noqa: E402
_app_database.SessionLocal = TestingSessionLocal  # type: ignore

TEST_LEASE_KEY = "test:maintenance:master"


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_sweeps.db")
    except OSError:
        pass


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _isolate_test_state(create_test_db):  # type: ignore[unused-argument]
    """Empty all tables and the process-wide sweep counters around every test."""
    def _purge():
        session = TestingSessionLocal()
        try:
            session.query(OrderItem).delete()
            session.query(Order).delete()
            session.query(PhoneNumber).delete()
            session.query(Product).delete()
            session.commit()
        finally:
            session.close()
    _purge()
    GLOBAL_SWEEP_METRICS.reset()
    yield
    _purge()
    GLOBAL_SWEEP_METRICS.reset()


# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db


class FakeGate:
    """Master flag the test flips directly."""

    def __init__(self, master: bool = True):
        self.master = master
        self.reads = 0

    def is_master(self) -> bool:
        self.reads += 1
        return self.master


@pytest.fixture()
def fake_gate():
    return FakeGate(master=True)


@pytest.fixture()
def lease_store():
    return InMemoryLeaseStore()


@pytest.fixture()
def maintenance(lease_store):
    """Gate + scheduler installed on app.state the way the lifespan does it.

    The APScheduler instance is never started: tests fire ticks directly so no
    wall-clock timers run in the background.
    """
    gate = LeaderElectionGate(
        lease_store,
        key=TEST_LEASE_KEY,
        lease_ttl_seconds=15,
        renew_interval_seconds=5,
    )
    gate.refresh()
    scheduler = ReconciliationScheduler(gate, metrics=SweepMetrics())
    tasks = register_default_sweeps(scheduler, timezone="Europe/Stockholm")
    for task in tasks.values():
        task.start()

    app.state.leader_gate = gate  # type: ignore[attr-defined]
    app.state.sweep_scheduler = scheduler  # type: ignore[attr-defined]
    yield gate, scheduler
    scheduler.shutdown()
    gate.stop()
    del app.state.leader_gate
    del app.state.sweep_scheduler


@pytest.fixture()
def client():
    return TestClient(app)


# ---------- Data factory helpers ----------

@pytest.fixture()
def product_factory(db_session):
    def _create(name: str = "Pizza Margherita", quantity: int = 10) -> Product:
        p = Product(name=name, quantity=quantity)
        db_session.add(p)
        db_session.commit()
        db_session.refresh(p)
        return p
    return _create


@pytest.fixture()
def order_factory(db_session):
    def _create(
        status: OrderStatus = OrderStatus.OPEN,
        *,
        created_at: datetime | None = None,
        checked_out_at: datetime | None = None,
        paid_at: datetime | None = None,
        items: list[tuple[Product, int]] | None = None,
    ) -> Order:
        order = Order(
            status=status,
            created_at=created_at or utc_now(),
            checked_out_at=checked_out_at,
            paid_at=paid_at,
        )
        db_session.add(order)
        db_session.flush()
        for product, quantity in items or []:
            db_session.add(OrderItem(order_id=order.id, product_id=product.id, quantity=quantity))
        db_session.commit()
        db_session.refresh(order)
        return order
    return _create


@pytest.fixture()
def unpaid_checkout(product_factory, order_factory):
    """An order checked out 16 minutes ago holding 2 units of a product with 3 left."""
    def _create(minutes_ago: float = 16, quantity: int = 2, remaining: int = 3):
        product = product_factory("Kebab Plate", quantity=remaining)
        checked_out = utc_now() - timedelta(minutes=minutes_ago)
        order = order_factory(
            OrderStatus.CHECKED_OUT,
            created_at=checked_out - timedelta(minutes=5),
            checked_out_at=checked_out,
            items=[(product, quantity)],
        )
        return order, product
    return _create


@pytest.fixture()
def phone_factory(db_session):
    def _create(number: str, *, verified: bool = False, created_at: datetime | None = None) -> PhoneNumber:
        phone = PhoneNumber(number=number, verified=verified, verification_code="1234", created_at=created_at or utc_now())
        db_session.add(phone)
        db_session.commit()
        db_session.refresh(phone)
        return phone
    return _create
