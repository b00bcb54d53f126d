"""
Pytest fixtures for the settlement engine test suite.

Provides:
- Database sessions isolated per test (outer transaction rolled back)
- Actors for every role, a deterministic clock and the module services
- Factories for reference rows and ready-to-sell containers

Environment Variables:
- DATABASE_URL: database to run against.  Defaults to in-memory SQLite;
  tests marked ``postgres`` are skipped unless it points at PostgreSQL.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from settlement_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from settlement_kernel.domain.access import Actor, Role
from settlement_kernel.domain.clock import DeterministicClock
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.statuses import ContainerStatus
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from settlement_kernel.models import Client, ContainerItem, Investor, Product
from settlement_kernel.services.period_service import PeriodService
from settlement_engines.cost_allocation import ItemLine
from settlement_modules.containers import ContainerService
from settlement_modules.expenses import ExpenseService
from settlement_modules.inventory import InventoryService
from settlement_modules.investments import InvestmentLine, InvestmentService
from settlement_modules.sales import SalesService
from settlement_services.dashboard import DashboardService
from settlement_services.period_close import PeriodCloseService
from settlement_services.recompute import ContainerRecomputePipeline
from settlement_services.reports import ReportService

DEFAULT_DATABASE_URL = "sqlite:///:memory:"

# Mid-month so that "today" and its period are unambiguous
TEST_NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

TEST_ACTOR_ID = UUID("00000000-0000-4000-a000-000000000001")


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def pytest_collection_modifyitems(config, items):
    if get_database_url().startswith("postgresql"):
        return
    skip = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture settlement logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, sales_service):
            sales_service.create_sale(...)
            assert any(r["message"] == "sale_created" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("settlement")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    eng = init_engine_from_url(get_database_url(), echo=False, pool_size=10, max_overflow=10)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; immutability guards stay active."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """
    Session joined to an outer transaction that is rolled back at teardown.

    ``session.commit()`` inside services only releases a savepoint, so every
    test starts from empty tables.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Clock, control, actors
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def control():
    return SystemControl()


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def make_actor():
    def _make_actor(role: Role) -> Actor:
        return Actor(user_id=uuid4(), role=role)

    return _make_actor


@pytest.fixture
def super_admin(make_actor):
    return make_actor(Role.SUPER_ADMIN)


@pytest.fixture
def admin(make_actor):
    return make_actor(Role.ADMIN)


@pytest.fixture
def manager(make_actor):
    return make_actor(Role.MANAGER)


@pytest.fixture
def accountant(make_actor):
    return make_actor(Role.ACCOUNTANT)


@pytest.fixture
def warehouse(make_actor):
    return make_actor(Role.WAREHOUSE)


@pytest.fixture
def investor_actor(make_actor):
    return make_actor(Role.INVESTOR)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def period_service(session, deterministic_clock):
    return PeriodService(session, deterministic_clock)


@pytest.fixture
def pipeline(session, control):
    return ContainerRecomputePipeline(session, control)


@pytest.fixture
def container_service(session, deterministic_clock, control):
    return ContainerService(session, clock=deterministic_clock, control=control)


@pytest.fixture
def expense_service(session, deterministic_clock, control):
    return ExpenseService(session, clock=deterministic_clock, control=control)


@pytest.fixture
def investment_service(session, deterministic_clock, control):
    return InvestmentService(session, clock=deterministic_clock, control=control)


@pytest.fixture
def sales_service(session, deterministic_clock, control):
    return SalesService(session, clock=deterministic_clock, control=control)


@pytest.fixture
def inventory_service(session, deterministic_clock, control):
    return InventoryService(session, clock=deterministic_clock, control=control)


@pytest.fixture
def dashboard_service(session, deterministic_clock, control):
    return DashboardService(session, deterministic_clock, control)


@pytest.fixture
def period_close_service(session, deterministic_clock, control):
    return PeriodCloseService(session, clock=deterministic_clock, control=control)


@pytest.fixture
def report_service(session, deterministic_clock, control):
    return ReportService(session, deterministic_clock, control)


# =============================================================================
# Reference rows
# =============================================================================


@pytest.fixture
def create_product(session: Session, test_actor_id: UUID):
    """Factory fixture to create products (committed, survive service rollbacks)."""

    def _create_product(name: str = "Ceramic tile", sku: str | None = None) -> Product:
        product = Product(name=name, sku=sku, created_by_id=test_actor_id)
        session.add(product)
        session.commit()
        return product

    return _create_product


@pytest.fixture
def create_client(session: Session, test_actor_id: UUID):
    def _create_client(name: str = "Acme Trading", credit_limit_usd: Decimal = Decimal("0")) -> Client:
        client = Client(name=name, credit_limit_usd=credit_limit_usd, created_by_id=test_actor_id)
        session.add(client)
        session.commit()
        return client

    return _create_client


@pytest.fixture
def create_investor(session: Session, test_actor_id: UUID):
    def _create_investor(name: str = "Investor One") -> Investor:
        investor = Investor(name=name, created_by_id=test_actor_id)
        session.add(investor)
        session.commit()
        return investor

    return _create_investor


@pytest.fixture
def product(create_product):
    return create_product()


@pytest.fixture
def client(create_client):
    return create_client()


@pytest.fixture
def investor(create_investor):
    return create_investor()


# =============================================================================
# Containers
# =============================================================================


@pytest.fixture
def stock_rows(session: Session):
    """Stock rows of a container, oldest first."""

    def _stock_rows(container_id: UUID) -> list[ContainerItem]:
        return list(
            session.execute(
                select(ContainerItem)
                .where(ContainerItem.container_id == container_id)
                .order_by(ContainerItem.created_at, ContainerItem.id)
            ).scalars()
        )

    return _stock_rows


@pytest.fixture
def arrived_container(container_service, admin, create_product, create_investor, stock_rows):
    """
    Factory for an ARRIVED container with one stock row.

    Defaults: 100 units at 10.00 purchase, 20.00 sale price, one investor
    whose capital equals the purchase (1000.00).
    """

    def _arrived_container(
        name: str = "CN-2024-01",
        quantity: int = 100,
        unit_price: Decimal = Decimal("10"),
        sale_price: Decimal = Decimal("20"),
        invested: Decimal | None = Decimal("1000"),
        exchange_rate: Decimal = Decimal("0.14"),
    ):
        item_product = create_product(f"Product for {name}")
        investments = []
        if invested is not None:
            investments.append(InvestmentLine(create_investor(f"Investor of {name}").id, invested))
        container = container_service.create_container(
            admin,
            name,
            date(2024, 1, 2),
            exchange_rate,
            items=[
                ItemLine(
                    item_product.id,
                    quantity,
                    unit_price_usd=unit_price,
                    sale_price_usd=sale_price,
                )
            ],
            investments=investments,
        )
        container_service.update_status(admin, container.id, ContainerStatus.ARRIVED)
        item = stock_rows(container.id)[0]
        return container, item

    return _arrived_container
