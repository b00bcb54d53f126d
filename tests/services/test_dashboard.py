"""
Tests for the dashboard read model.

Covers:
- KPIs over a month and per container
- Container overview rows
- Debt by client and overdue detection
- Monthly profit series
- System alerts
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from settlement_kernel.domain.control import SystemControl
from settlement_modules.inventory import CountRequest
from settlement_modules.sales import SaleLineRequest
from settlement_services.dashboard import DashboardService

DUE = date(2024, 2, 15)


@pytest.fixture
def sold_container(arrived_container, sales_service, manager, client):
    """Default container with 10 units sold for cash."""
    container, item = arrived_container()
    sales_service.create_sale(
        manager, client.id, [SaleLineRequest(item.id, 10)], "IMMEDIATE", paid_now=Decimal("200")
    )
    return container, item


def _keys(alerts):
    return {alert.key for alert in alerts}


class TestKpis:
    def test_month_after_cash_sale(self, dashboard_service, sold_container):
        kpis = dashboard_service.kpis_for_month(2024, 1)

        assert kpis.revenue == Decimal("200")
        assert kpis.cogs == Decimal("100")
        assert kpis.expenses == Decimal("0")
        assert kpis.net_profit == Decimal("100")
        assert kpis.debt_total == Decimal("0")
        assert kpis.available_to_payout == Decimal("100")

    def test_other_month_has_no_sales(self, dashboard_service, sold_container):
        kpis = dashboard_service.kpis_for_month(2024, 2)

        assert kpis.revenue == Decimal("0")
        assert kpis.net_profit == Decimal("0")

    def test_container_filter(self, dashboard_service, sold_container, arrived_container):
        other, _ = arrived_container("CN-OTHER")
        start, end = datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 2, 1, tzinfo=timezone.utc)

        assert dashboard_service.compute_kpis(start, end, other.id).revenue == Decimal("0")
        assert dashboard_service.compute_kpis(start, end, sold_container[0].id).revenue == Decimal("200")

    def test_expenses_and_debt(
        self, dashboard_service, expense_service, sales_service, arrived_container, accountant, manager, client
    ):
        container, item = arrived_container()
        expense_service.add_expense(accountant, container.id, Decimal("100"), "LOGISTICS", "Freight")
        sales_service.create_sale(
            manager, client.id, [SaleLineRequest(item.id, 5)], "DEBT", paid_now=Decimal("30"), due_date=DUE
        )

        kpis = dashboard_service.kpis_for_month(2024, 1)

        assert kpis.expenses == Decimal("100")
        assert kpis.debt_total == Decimal("70")

    def test_payouts_reduce_available(
        self, dashboard_service, investment_service, container_service, sold_container, admin
    ):
        container, _ = sold_container
        investor_id = container_service.settlement_summary(container.id).shares[0].investor_id
        investment_service.record_payout(admin, container.id, investor_id, Decimal("40"))

        assert dashboard_service.kpis_for_month(2024, 1).available_to_payout == Decimal("60")


class TestMonthlyProfit:
    def test_series_ends_in_current_month(self, dashboard_service, sold_container):
        points = dashboard_service.monthly_profit(3)

        assert [p.label for p in points] == ["11.2023", "12.2023", "01.2024"]
        assert [p.net_profit for p in points] == [Decimal("0"), Decimal("0"), Decimal("100")]


class TestContainerRows:
    def test_row_for_partly_sold_container(self, dashboard_service, sold_container):
        start, end = datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 2, 1, tzinfo=timezone.utc)

        (row,) = dashboard_service.container_rows(start, end)

        assert row.container_id == sold_container[0].id
        assert row.invested == Decimal("1000")
        assert row.sold == Decimal("200")
        assert row.profit == Decimal("100")
        assert row.sold_percent == Decimal("10")
        assert row.status == "IN_PROGRESS"

    def test_unsold_container_is_open(self, dashboard_service, arrived_container):
        arrived_container()
        start, end = datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 2, 1, tzinfo=timezone.utc)

        (row,) = dashboard_service.container_rows(start, end)

        assert row.sold_percent == Decimal("0")
        assert row.status == "OPEN"


class TestDebtRows:
    def test_grouped_by_client(self, dashboard_service, sales_service, arrived_container, manager, create_client):
        _, item = arrived_container()
        big = create_client("Big Buyer")
        small = create_client("Small Buyer")
        sales_service.create_sale(manager, big.id, [SaleLineRequest(item.id, 3)], "DEBT", due_date=DUE)
        sales_service.create_sale(manager, big.id, [SaleLineRequest(item.id, 2)], "DEBT", due_date=DUE)
        sales_service.create_sale(manager, small.id, [SaleLineRequest(item.id, 1)], "DEBT", due_date=DUE)

        rows = dashboard_service.debt_rows()

        assert [(r.client_name, r.debt, r.sale_count) for r in rows] == [
            ("Big Buyer", Decimal("100"), 2),
            ("Small Buyer", Decimal("20"), 1),
        ]
        assert not any(r.overdue for r in rows)

    def test_overdue_after_due_date(self, dashboard_service, sales_service, arrived_container, manager, client):
        _, item = arrived_container()
        sales_service.create_sale(manager, client.id, [SaleLineRequest(item.id, 1)], "DEBT", due_date=DUE)

        (row,) = dashboard_service.debt_rows(datetime(2024, 3, 1, tzinfo=timezone.utc))

        assert row.overdue is True
        assert row.days_overdue == 15

    def test_paid_sales_not_listed(self, dashboard_service, sold_container):
        assert dashboard_service.debt_rows() == []


class TestSystemAlerts:
    def test_fresh_system(self, dashboard_service):
        keys = _keys(dashboard_service.system_alerts())

        assert keys == {"current_period_open", "inventory_unconfirmed"}

    def test_previous_month_open(self, dashboard_service, period_service, test_actor_id):
        period_service.get_or_create(2023, 12, test_actor_id)

        assert "previous_period_open" in _keys(dashboard_service.system_alerts())

    def test_discrepancy_and_confirmation(
        self, dashboard_service, inventory_service, arrived_container, warehouse, accountant
    ):
        _, item = arrived_container()
        inventory_service.submit_count(warehouse, "Short", [CountRequest(item.id, 99)])
        clean = inventory_service.submit_count(warehouse, "Clean", [CountRequest(item.id, 100)])
        inventory_service.confirm_code(accountant, clean.code)

        keys = _keys(dashboard_service.system_alerts())

        assert "warehouse_discrepancy" in keys
        assert "inventory_unconfirmed" not in keys

    def test_overdue_debts(
        self, dashboard_service, sales_service, arrived_container, manager, client, deterministic_clock
    ):
        _, item = arrived_container()
        sales_service.create_sale(manager, client.id, [SaleLineRequest(item.id, 1)], "DEBT", due_date=DUE)
        deterministic_clock.set_time(datetime(2024, 2, 20, tzinfo=timezone.utc))

        assert "overdue_debts" in _keys(dashboard_service.system_alerts())

    def test_container_nearly_sold(
        self, dashboard_service, sales_service, arrived_container, manager, client, deterministic_clock
    ):
        _, item = arrived_container()
        sales_service.create_sale(
            manager, client.id, [SaleLineRequest(item.id, 95)], "IMMEDIATE", paid_now=Decimal("1900")
        )
        deterministic_clock.advance(minutes=1)

        alerts = dashboard_service.system_alerts()

        assert "container_nearly_sold" in _keys(alerts)
        assert all(a.level == "warning" for a in alerts if a.key == "container_nearly_sold")

    def test_investor_nearly_paid(
        self, dashboard_service, investment_service, container_service, sold_container, admin
    ):
        container, _ = sold_container
        investor_id = container_service.settlement_summary(container.id).shares[0].investor_id
        investment_service.record_payout(admin, container.id, investor_id, Decimal("95"))

        assert "investor_nearly_paid" in _keys(dashboard_service.system_alerts())

    def test_expenses_over_budget(
        self, session, deterministic_clock, expense_service, arrived_container, accountant
    ):
        container, _ = arrived_container()
        expense_service.add_expense(accountant, container.id, Decimal("100"), "OTHER", "Fee")
        dashboard = DashboardService(
            session, deterministic_clock, SystemControl(planned_monthly_expenses_usd=Decimal("50"))
        )

        assert "expenses_over_budget" in _keys(dashboard.system_alerts())

    def test_no_budget_no_alert(self, dashboard_service, expense_service, arrived_container, accountant):
        container, _ = arrived_container()
        expense_service.add_expense(accountant, container.id, Decimal("100"), "OTHER", "Fee")

        assert "expenses_over_budget" not in _keys(dashboard_service.system_alerts())
