"""
settlement_services.reports -- period report data for the report renderer.

Builds one ``PeriodReport`` per financial period: the month's KPIs, its
sales, expenses with correction sums, payouts, inventory sessions and a
few summary counters.  Rendering (PDF, Word, CSV) belongs to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.statuses import InventorySessionStatus
from settlement_kernel.domain.values import ZERO
from settlement_kernel.logging_config import get_logger
from settlement_kernel.selectors import (
    ExpenseDTO,
    ExpenseSelector,
    InventorySelector,
    SalesSelector,
    SettlementSelector,
)
from settlement_kernel.services.period_service import PeriodService
from settlement_services.dashboard import DashboardService, KpiSnapshot

logger = get_logger("services.reports")


@dataclass(frozen=True)
class SaleReportRow:
    sale_id: UUID
    invoice_number: str
    client_id: UUID
    mode: str
    status: str
    total_usd: Decimal
    paid_usd: Decimal
    debt_usd: Decimal
    sold_at: datetime
    due_date: date | None


@dataclass(frozen=True)
class PayoutReportRow:
    payout_id: UUID
    container_id: UUID
    investor_id: UUID
    amount_usd: Decimal
    payout_date: datetime


@dataclass(frozen=True)
class InventoryReportRow:
    session_id: UUID
    reference: str
    title: str
    status: str
    discrepancy_count: int
    submitted_at: datetime
    confirmed_at: datetime | None


@dataclass(frozen=True)
class ReportSummary:
    sales_count: int
    sales_total_usd: Decimal
    paid_total_usd: Decimal
    debt_total_usd: Decimal
    expenses_count: int
    expenses_total_usd: Decimal
    unconfirmed_corrections: int
    payouts_count: int
    payouts_total_usd: Decimal
    confirmed_inventory_sessions: int
    discrepancy_inventory_sessions: int


@dataclass(frozen=True)
class PeriodReport:
    period_id: UUID
    label: str
    status: str
    kpis: KpiSnapshot
    sales: tuple[SaleReportRow, ...]
    expenses: tuple[ExpenseDTO, ...]
    payouts: tuple[PayoutReportRow, ...]
    inventory_sessions: tuple[InventoryReportRow, ...]
    summary: ReportSummary


class ReportService:
    """Read-only assembly of period reports."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        control: SystemControl | None = None,
    ):
        self._periods = PeriodService(session, clock)
        self._dashboard = DashboardService(session, clock, control)
        self._sales = SalesSelector(session)
        self._expenses = ExpenseSelector(session)
        self._settlement = SettlementSelector(session)
        self._inventory = InventorySelector(session)

    def period_report(self, period_id: UUID) -> PeriodReport:
        period = self._periods.get(period_id)

        sales = tuple(
            SaleReportRow(
                sale_id=sale.id,
                invoice_number=sale.invoice_number,
                client_id=sale.client_id,
                mode=sale.mode,
                status=sale.status,
                total_usd=sale.total_amount_usd,
                paid_usd=sale.paid_amount_usd,
                debt_usd=sale.debt_amount_usd,
                sold_at=sale.sold_at,
                due_date=sale.due_date,
            )
            for sale in self._sales.sales_for_period(period.id)
        )
        expenses = tuple(self._expenses.expenses_for_period(period.id))
        payouts = tuple(
            PayoutReportRow(
                payout_id=payout.id,
                container_id=payout.container_id,
                investor_id=payout.investor_id,
                amount_usd=payout.amount_usd,
                payout_date=payout.payout_date,
            )
            for payout in self._settlement.payouts_for_period(period.id)
        )
        sessions = tuple(
            InventoryReportRow(
                session_id=s.id,
                reference=s.reference,
                title=s.title,
                status=s.status,
                discrepancy_count=s.discrepancy_count,
                submitted_at=s.submitted_at,
                confirmed_at=s.confirmed_at,
            )
            for s in self._inventory.sessions_for_period(period.id)
        )

        summary = ReportSummary(
            sales_count=len(sales),
            sales_total_usd=sum((s.total_usd for s in sales), ZERO),
            paid_total_usd=sum((s.paid_usd for s in sales), ZERO),
            debt_total_usd=sum((s.debt_usd for s in sales), ZERO),
            expenses_count=len(expenses),
            expenses_total_usd=sum((e.effective_amount_usd for e in expenses), ZERO),
            unconfirmed_corrections=self._expenses.unconfirmed_correction_count(period.id),
            payouts_count=len(payouts),
            payouts_total_usd=sum((p.amount_usd for p in payouts), ZERO),
            confirmed_inventory_sessions=sum(
                1 for s in sessions if s.status == InventorySessionStatus.CONFIRMED
            ),
            discrepancy_inventory_sessions=sum(
                1 for s in sessions if s.status == InventorySessionStatus.DISCREPANCY
            ),
        )

        report = PeriodReport(
            period_id=period.id,
            label=period.label,
            status=period.status,
            kpis=self._dashboard.kpis_for_month(period.year, period.month),
            sales=sales,
            expenses=expenses,
            payouts=payouts,
            inventory_sessions=sessions,
            summary=summary,
        )
        logger.info(
            "period_report_built",
            extra={
                "period_id": str(period.id),
                "sales_count": summary.sales_count,
                "payouts_count": summary.payouts_count,
            },
        )
        return report
