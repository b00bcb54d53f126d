"""
settlement_services.dashboard -- read-only projections for the back office.

Responsibility:
    KPIs over a time range, per-container overview rows, debt by client,
    the monthly profit series and the system alert list.

Architecture position:
    Services -- read-only.  Reads through the kernel selectors and the
    pure engines; never flushes or commits and never creates a period.

Invariants enforced:
    - Every figure is recomputed from rows on each call.
    - Time ranges are half-open ``[start, end)`` in UTC.
    - Sold quantities are always net of returns.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from settlement_engines.financials import (
    ExpenseLine,
    SoldLine,
    compute_financials,
    display_status,
    sold_percent,
)
from settlement_engines.settlement import payout_progress, realized_profit_share
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.statuses import ContainerStatus
from settlement_kernel.domain.values import ZERO, quantize_amount
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models import Container, ContainerInvestment, ContainerItem
from settlement_kernel.selectors import (
    ExpenseSelector,
    InventorySelector,
    SalesSelector,
    SettlementSelector,
)
from settlement_kernel.services.period_service import (
    PeriodService,
    month_bounds,
    month_of,
    previous_month,
)

logger = get_logger("services.dashboard")


@dataclass(frozen=True)
class KpiSnapshot:
    revenue: Decimal
    cogs: Decimal
    expenses: Decimal
    net_profit: Decimal
    debt_total: Decimal
    available_to_payout: Decimal


@dataclass(frozen=True)
class ContainerRow:
    container_id: UUID
    name: str
    invested: Decimal
    sold: Decimal
    expenses: Decimal
    profit: Decimal
    sold_percent: Decimal
    status: str


@dataclass(frozen=True)
class DebtRow:
    client_id: UUID
    client_name: str
    debt: Decimal
    overdue: bool
    days_overdue: int
    sale_count: int


@dataclass(frozen=True)
class ProfitPoint:
    year: int
    month: int
    net_profit: Decimal

    @property
    def label(self) -> str:
        return f"{self.month:02d}.{self.year}"


@dataclass(frozen=True)
class SystemAlert:
    level: str
    key: str
    text: str


CRITICAL = "critical"
WARNING = "warning"


class DashboardService:
    """
    Read model over containers, sales, expenses, payouts and inventory.

    Contract:
        Pure reads on the caller's session.

    Non-goals:
        Rendering, chart layout, notification delivery.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        control: SystemControl | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._control = control or SystemControl()
        self._sales = SalesSelector(session)
        self._expenses = ExpenseSelector(session)
        self._settlement = SettlementSelector(session)
        self._inventory = InventorySelector(session)
        self._periods = PeriodService(session, self._clock)

    # -------------------------------------------------------------------------
    # KPIs
    # -------------------------------------------------------------------------

    def compute_kpis(
        self,
        start: datetime,
        end: datetime,
        container_id: UUID | None = None,
    ) -> KpiSnapshot:
        """
        Revenue and COGS over sales made in the range, expenses and
        corrections recorded in the range, open debt of those sales and
        the profit share still available to investors.
        """
        sold = [
            SoldLine(
                quantity=line.quantity,
                returned_quantity=line.returned_quantity,
                sale_price_per_unit_usd=line.sale_price_per_unit_usd,
                cost_per_unit_usd=line.cost_per_unit_usd,
            )
            for line in self._sales.sold_lines(
                sold_from=start, sold_to=end, container_id=container_id
            )
        ]
        expenses = self._expenses.recorded_total(start, end, container_id)
        financials = compute_financials(sold, [ExpenseLine(amount_usd=expenses)])

        available = ZERO
        for position in self._settlement.positions(container_id=container_id):
            share = realized_profit_share(position.net_profit_usd, position.percentage_share)
            available += share - position.paid_usd

        return KpiSnapshot(
            revenue=financials.revenue,
            cogs=financials.cogs,
            expenses=financials.expenses,
            net_profit=financials.net_profit,
            debt_total=Decimal(self._sales.debt_total(start, end, container_id)),
            available_to_payout=quantize_amount(available),
        )

    def kpis_for_month(self, year: int, month: int) -> KpiSnapshot:
        return self.compute_kpis(*month_bounds(year, month))

    def monthly_profit(self, months: int = 6) -> list[ProfitPoint]:
        """Net profit of the last ``months`` calendar months, oldest first."""
        year, month = month_of(self._clock.today())
        keys = []
        for _ in range(months):
            keys.append((year, month))
            year, month = previous_month(year, month)
        return [
            ProfitPoint(year=y, month=m, net_profit=self.kpis_for_month(y, m).net_profit)
            for y, m in reversed(keys)
        ]

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    def container_rows(self, start: datetime, end: datetime) -> list[ContainerRow]:
        """One overview row per container, newest first; sales limited to the range."""
        containers = list(
            self._session.execute(
                select(Container).order_by(Container.created_at.desc(), Container.name)
            ).scalars()
        )
        invested = dict(
            self._session.execute(
                select(
                    ContainerInvestment.container_id,
                    func.sum(ContainerInvestment.invested_amount_usd),
                ).group_by(ContainerInvestment.container_id)
            ).all()
        )
        current_qty = dict(
            self._session.execute(
                select(ContainerItem.container_id, func.sum(ContainerItem.quantity))
                .group_by(ContainerItem.container_id)
            ).all()
        )
        sold_qty: dict[UUID, int] = defaultdict(int)
        sold_value: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for line in self._sales.sold_lines(sold_from=start, sold_to=end):
            effective = max(0, line.quantity - line.returned_quantity)
            sold_qty[line.container_id] += effective
            sold_value[line.container_id] += effective * line.sale_price_per_unit_usd
        expenses = self._expenses.effective_total_by_container()

        rows = []
        for container in containers:
            percent = sold_percent(
                sold_qty[container.id], int(current_qty.get(container.id) or 0)
            )
            rows.append(
                ContainerRow(
                    container_id=container.id,
                    name=container.name,
                    invested=Decimal(invested.get(container.id) or ZERO),
                    sold=quantize_amount(sold_value[container.id]),
                    expenses=expenses.get(container.id, ZERO),
                    profit=container.net_profit_usd,
                    sold_percent=percent,
                    status=display_status(
                        container.status, percent, self._control.sold_out_percent
                    ),
                )
            )
        return rows

    def debt_rows(self, now: datetime | None = None) -> list[DebtRow]:
        """
        Open debt grouped by client, largest first.

        A sale is overdue once its due date lies before today.
        """
        today = (now or self._clock.now()).date()
        grouped: dict[UUID, dict] = {}
        for debt in self._sales.open_debts():
            entry = grouped.setdefault(
                debt.client_id,
                {"name": debt.client_name, "debt": ZERO, "overdue": False, "days": 0, "count": 0},
            )
            entry["debt"] += debt.debt_amount_usd
            entry["count"] += 1
            if debt.due_date is not None and debt.due_date < today:
                entry["overdue"] = True
                entry["days"] = max(entry["days"], _days_between(debt.due_date, today))

        rows = [
            DebtRow(
                client_id=client_id,
                client_name=entry["name"],
                debt=entry["debt"],
                overdue=entry["overdue"],
                days_overdue=entry["days"],
                sale_count=entry["count"],
            )
            for client_id, entry in grouped.items()
        ]
        rows.sort(key=lambda row: (-row.debt, row.client_name))
        return rows

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def system_alerts(self) -> list[SystemAlert]:
        now = self._clock.now()
        today = now.date()
        alerts: list[SystemAlert] = []

        previous = self._periods.previous_period(today)
        if previous is not None and not previous.is_locked:
            alerts.append(
                SystemAlert(CRITICAL, "previous_period_open", "Previous month is not closed.")
            )
        current = self._periods.find(*month_of(today))
        if current is None or not current.is_locked:
            alerts.append(
                SystemAlert(
                    CRITICAL,
                    "current_period_open",
                    "Current period is open and needs closing control.",
                )
            )
        if self._inventory.last_confirmed_at() is None:
            alerts.append(
                SystemAlert(CRITICAL, "inventory_unconfirmed", "No inventory count has been confirmed.")
            )
        if self._inventory.open_discrepancy_count() > 0:
            alerts.append(
                SystemAlert(CRITICAL, "warehouse_discrepancy", "There are open warehouse discrepancies.")
            )
        if any(row.overdue for row in self.debt_rows(now)):
            alerts.append(
                SystemAlert(CRITICAL, "overdue_debts", "There are overdue client debts.")
            )

        nearly = self._control.nearly_sold_percent
        if any(
            row.sold_percent >= nearly and row.status not in ("SOLD_OUT", ContainerStatus.CLOSED.value)
            for row in self.container_rows(now - timedelta(days=30), now)
        ):
            alerts.append(
                SystemAlert(WARNING, "container_nearly_sold", f"Some containers are over {nearly}% sold.")
            )

        for position in self._settlement.positions():
            progress = payout_progress(
                position.paid_usd,
                realized_profit_share(position.net_profit_usd, position.percentage_share),
            )
            if progress is not None and self._control.payout_progress_alert <= progress < 1:
                alerts.append(
                    SystemAlert(WARNING, "investor_nearly_paid", "An investor is close to a full payout.")
                )
                break

        budget = self._control.planned_monthly_expenses_usd
        if budget > ZERO:
            month_start, _ = month_bounds(today.year, today.month)
            spent = self.compute_kpis(month_start, now + timedelta(microseconds=1)).expenses
            if spent > budget:
                alerts.append(
                    SystemAlert(
                        WARNING,
                        "expenses_over_budget",
                        "Expenses exceed the plan for the current month.",
                    )
                )

        logger.debug(
            "system_alerts_built",
            extra={
                "critical": sum(1 for a in alerts if a.level == CRITICAL),
                "warning": sum(1 for a in alerts if a.level == WARNING),
            },
        )
        return alerts


def _days_between(earlier: date, later: date) -> int:
    return (later - earlier).days
