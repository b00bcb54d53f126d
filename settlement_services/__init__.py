"""
Services -- stateful orchestration over the pure engines and the kernel.

ContainerRecomputePipeline   derived container state (flush-only)
PeriodCloseService           close checklist, lock and unlock
DashboardService             KPIs, overview rows, debts, alerts
ReportService                period report data
"""

from settlement_services.dashboard import (
    ContainerRow,
    DashboardService,
    DebtRow,
    KpiSnapshot,
    ProfitPoint,
    SystemAlert,
)
from settlement_services.period_close import PeriodCloseService
from settlement_services.recompute import (
    ContainerRecomputePipeline,
    ContainerRecomputeResult,
)
from settlement_services.reports import PeriodReport, ReportService

__all__ = [
    "ContainerRecomputePipeline",
    "ContainerRecomputeResult",
    "ContainerRow",
    "DashboardService",
    "DebtRow",
    "KpiSnapshot",
    "PeriodCloseService",
    "PeriodReport",
    "ProfitPoint",
    "ReportService",
    "SystemAlert",
]
