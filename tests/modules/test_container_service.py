"""
Tests for container and stock operations.

Covers:
- Container creation with items, capital and an initial expense
- Adding and merging stock lines, purchase growth
- Status transitions
- Manual stock, stock edits and deletion guards
- Settlement summary
"""

from datetime import date
from decimal import Decimal

import pytest

from settlement_engines.cost_allocation import ItemLine
from settlement_kernel.domain.statuses import ContainerStatus
from settlement_kernel.exceptions import (
    AuthorizationError,
    ContainerClosedError,
    ContainerInTransitError,
    InvalidStatusTransitionError,
    PeriodLockedError,
    StockInUseError,
    ValidationError,
)
from settlement_kernel.models import AuditAction, ContainerItem
from settlement_kernel.services.audit_service import AuditService
from settlement_modules.containers import ManualStockLine
from settlement_modules.expenses import ExpenseDraft
from settlement_modules.investments import InvestmentLine
from settlement_modules.sales import SaleLineRequest


class TestCreateContainer:
    def test_creates_in_transit_with_derived_state(
        self, container_service, admin, product, investor, stock_rows
    ):
        container = container_service.create_container(
            admin,
            "CN-2024-07",
            date(2024, 1, 2),
            Decimal("0.14"),
            items=[ItemLine(product.id, 100, unit_price_usd=Decimal("10"), sale_price_usd=Decimal("20"))],
            investments=[InvestmentLine(investor.id, Decimal("1000"))],
        )

        assert container.status == ContainerStatus.IN_TRANSIT.value
        assert container.total_purchase_usd == Decimal("1000")
        assert container.total_expenses_usd == Decimal("0")
        [item] = stock_rows(container.id)
        assert item.quantity == 100
        assert item.cost_per_unit_usd == Decimal("10")

        summary = container_service.settlement_summary(container.id)
        assert summary.invested_total_usd == Decimal("1000")
        assert summary.matches_expected
        assert summary.shares[0].percentage_share == Decimal("100")

    def test_cny_amount_can_dominate(self, container_service, admin, product):
        container = container_service.create_container(
            admin,
            "CN-CNY",
            date(2024, 1, 2),
            Decimal("0.5"),
            total_purchase_cny=Decimal("4000"),
            items=[ItemLine(product.id, 10, unit_price_usd=Decimal("10"))],
        )
        assert container.total_purchase_usd == Decimal("2000")
        assert container.total_purchase_cny == Decimal("4000")

    def test_duplicate_product_lines_are_merged(self, container_service, admin, product, stock_rows):
        container = container_service.create_container(
            admin,
            "CN-MERGE",
            date(2024, 1, 2),
            Decimal("1"),
            items=[
                ItemLine(product.id, 10, unit_price_usd=Decimal("2")),
                ItemLine(product.id, 5),
            ],
        )
        [item] = stock_rows(container.id)
        assert item.quantity == 15
        assert container.total_purchase_usd == Decimal("30")

    def test_initial_expense_raises_unit_cost(
        self, container_service, admin, product, investor, stock_rows
    ):
        container = container_service.create_container(
            admin,
            "CN-EXP",
            date(2024, 1, 2),
            Decimal("1"),
            items=[ItemLine(product.id, 100, unit_price_usd=Decimal("10"))],
            investments=[InvestmentLine(investor.id, Decimal("1000"))],
            initial_expense=ExpenseDraft(Decimal("200")),
        )

        assert container.total_expenses_usd == Decimal("200")
        assert stock_rows(container.id)[0].cost_per_unit_usd == Decimal("12")
        summary = container_service.settlement_summary(container.id)
        assert summary.expected_capital_usd == Decimal("1200")
        assert not summary.matches_expected

    def test_name_required(self, container_service, admin):
        with pytest.raises(ValidationError):
            container_service.create_container(admin, "  ", date(2024, 1, 2), Decimal("1"))

    def test_manager_cannot_create(self, container_service, manager):
        with pytest.raises(AuthorizationError):
            container_service.create_container(manager, "CN", date(2024, 1, 2), Decimal("1"))

    def test_locked_period_blocks_creation(
        self, container_service, period_service, admin, test_actor_id
    ):
        period = period_service.get_or_create(2024, 1, test_actor_id)
        period_service.lock(period.id, test_actor_id)

        with pytest.raises(PeriodLockedError):
            container_service.create_container(admin, "CN", date(2024, 1, 2), Decimal("1"))

    def test_audited(self, container_service, session, admin, deterministic_clock):
        container = container_service.create_container(admin, "CN-A", date(2024, 1, 2), Decimal("1"))
        container_service.update_status(admin, container.id, ContainerStatus.ARRIVED)

        trail = AuditService(session, deterministic_clock).trail("Container", container.id)
        assert [entry.action for entry in trail] == [
            AuditAction.CONTAINER_CREATED.value,
            AuditAction.CONTAINER_STATUS_CHANGED.value,
        ]
        assert trail[1].payload["to"] == "ARRIVED"


class TestAddItem:
    def test_in_transit_container_rejects_items(self, container_service, admin, product, create_product):
        container = container_service.create_container(
            admin, "CN-T", date(2024, 1, 2), Decimal("1"),
            items=[ItemLine(product.id, 1, unit_price_usd=Decimal("1"))],
        )
        with pytest.raises(ContainerInTransitError):
            container_service.add_item(admin, container.id, create_product("Other").id, 5)

    def test_new_product_grows_purchase(self, container_service, arrived_container, admin, create_product, stock_rows):
        container, item = arrived_container()
        other = create_product("Second product")

        added = container_service.add_item(admin, container.id, other.id, 50, unit_price_usd=Decimal("10"))

        assert container.total_purchase_usd == Decimal("1500")
        assert added.quantity == 50
        # One shared unit cost: 1500 / 150
        assert {row.cost_per_unit_usd for row in stock_rows(container.id)} == {Decimal("10")}

    def test_same_product_merges(self, container_service, arrived_container, admin, stock_rows):
        container, item = arrived_container()

        merged = container_service.add_item(
            admin, container.id, item.product_id, 20, unit_price_usd=Decimal("12")
        )

        assert merged.id == item.id
        assert merged.quantity == 120
        assert merged.purchase_price_usd == Decimal("12")
        # 120 x 12 replaces 100 x 10: growth of 440
        assert container.total_purchase_usd == Decimal("1440")
        assert len(stock_rows(container.id)) == 1

    def test_closed_container_rejects_items(self, container_service, arrived_container, admin, create_product):
        container, _ = arrived_container()
        container_service.update_status(admin, container.id, ContainerStatus.CLOSED)

        with pytest.raises(ContainerClosedError):
            container_service.add_item(admin, container.id, create_product("Late").id, 1)


class TestUpdateStatus:
    def test_arrival_sets_date(self, container_service, admin):
        container = container_service.create_container(admin, "CN-S", date(2024, 1, 2), Decimal("1"))
        container_service.update_status(admin, container.id, "ARRIVED")

        assert container.status == "ARRIVED"
        assert container.arrival_date == date(2024, 1, 15)

    def test_explicit_arrival_date(self, container_service, admin):
        container = container_service.create_container(admin, "CN-S", date(2024, 1, 2), Decimal("1"))
        container_service.update_status(admin, container.id, ContainerStatus.ARRIVED, date(2024, 1, 10))
        assert container.arrival_date == date(2024, 1, 10)

    def test_same_status_is_noop(self, container_service, session, admin, deterministic_clock):
        container = container_service.create_container(admin, "CN-S", date(2024, 1, 2), Decimal("1"))
        container_service.update_status(admin, container.id, ContainerStatus.IN_TRANSIT)

        trail = AuditService(session, deterministic_clock).trail("Container", container.id)
        assert len(trail) == 1

    def test_backwards_rejected(self, container_service, arrived_container, admin):
        container, _ = arrived_container()
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            container_service.update_status(admin, container.id, ContainerStatus.IN_TRANSIT)
        assert exc_info.value.current == "ARRIVED"

    def test_unknown_status(self, container_service, arrived_container, admin):
        container, _ = arrived_container()
        with pytest.raises(ValidationError):
            container_service.update_status(admin, container.id, "LOST")


class TestManualStock:
    def test_first_use_creates_arrived_container(
        self, container_service, session, super_admin, product, control
    ):
        entries = container_service.add_manual_stock(
            super_admin,
            "Found during audit",
            [ManualStockLine(product.id, 5, unit_price_usd=Decimal("4"))],
        )

        [entry] = entries
        assert entry.quantity == 5
        assert entry.purchase_amount_usd == Decimal("20")
        item = session.get(ContainerItem, entry.container_item_id)
        assert item.container.is_manual_stock
        assert item.container.name == control.manual_stock_container_name
        assert item.container.status == ContainerStatus.ARRIVED.value
        assert item.container.total_purchase_usd == Decimal("20")

    def test_second_use_reuses_container(self, container_service, session, super_admin, product, create_product):
        first = container_service.add_manual_stock(
            super_admin, "Batch 1", [ManualStockLine(product.id, 1, line_total_usd=Decimal("3"))]
        )
        second = container_service.add_manual_stock(
            super_admin, "Batch 2", [ManualStockLine(create_product("Other").id, 2, unit_price_usd=Decimal("1"))]
        )
        first_item = session.get(ContainerItem, first[0].container_item_id)
        second_item = session.get(ContainerItem, second[0].container_item_id)
        assert first_item.container_id == second_item.container_id

    def test_line_needs_purchase_value(self, product):
        with pytest.raises(ValidationError):
            ManualStockLine(product.id, 5)

    def test_reason_required(self, container_service, super_admin, product):
        with pytest.raises(ValidationError):
            container_service.add_manual_stock(
                super_admin, "", [ManualStockLine(product.id, 1, unit_price_usd=Decimal("1"))]
            )

    def test_admin_cannot_manage_stock(self, container_service, admin, product):
        with pytest.raises(AuthorizationError):
            container_service.add_manual_stock(
                admin, "x", [ManualStockLine(product.id, 1, unit_price_usd=Decimal("1"))]
            )


class TestStockItems:
    def test_quantity_edit_recomputes_unit_cost(self, container_service, arrived_container, super_admin):
        container, item = arrived_container()

        updated = container_service.update_stock_item(super_admin, item.id, 80, sale_price_usd=Decimal("25"))

        assert updated.quantity == 80
        assert updated.sale_price_usd == Decimal("25")
        assert updated.cost_per_unit_usd == Decimal("12.5")
        assert container.total_purchase_usd == Decimal("1000")

    def test_negative_quantity_rejected(self, container_service, arrived_container, super_admin):
        _, item = arrived_container()
        with pytest.raises(ValidationError):
            container_service.update_stock_item(super_admin, item.id, -1)

    def test_unreferenced_item_deleted(self, container_service, arrived_container, super_admin, stock_rows):
        container, item = arrived_container()
        container_service.delete_stock_item(super_admin, item.id)
        assert stock_rows(container.id) == []

    def test_sold_item_cannot_be_deleted(
        self, container_service, sales_service, arrived_container, super_admin, manager, client
    ):
        _, item = arrived_container()
        sales_service.create_sale(
            manager, client.id, [SaleLineRequest(item.id, 1)], "IMMEDIATE", paid_now=Decimal("20")
        )

        with pytest.raises(StockInUseError):
            container_service.delete_stock_item(super_admin, item.id)
