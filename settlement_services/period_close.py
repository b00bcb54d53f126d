"""
settlement_services.period_close -- month-close checklist and lock control.

Responsibility:
    Gathers the close facts of one financial period, evaluates the
    four-item checklist and is the public entry point for locking and
    unlocking a period.

Architecture position:
    Services -- orchestration over kernel + engines.
    Composes PeriodService (status transitions), the kernel selectors
    (live counts), DashboardService (period net profit) and AuditService.
    Checklist decisions live in settlement_engines.close_checklist.

Invariants enforced:
    - A period is locked only when every checklist item passes.
    - The period row is locked FOR UPDATE before the checklist is read,
      so two concurrent lock attempts serialize.
    - Unlock requires a non-empty reason.
    - Lock and unlock each write one audit event in the same transaction.

Failure modes:
    - PeriodCloseBlockedError with every failing reason.
    - AuthorizationError when the actor's role is outside the role set.
    - NotFoundError for an unknown period id.
    - StateConflictError when locking a LOCKED or unlocking an OPEN period.

Audit relevance:
    Blocked attempts are logged at WARNING with the blocker list.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from settlement_engines.close_checklist import (
    ChecklistItem,
    CloseFacts,
    blockers,
    evaluate_checklist,
)
from settlement_kernel.db.unit_of_work import unit_of_work
from settlement_kernel.domain.access import Actor, Operation, RolePolicy
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.statuses import InventorySessionStatus
from settlement_kernel.exceptions import PeriodCloseBlockedError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models import AuditAction, FinancialPeriod
from settlement_kernel.selectors import ExpenseSelector, InventorySelector, SalesSelector
from settlement_kernel.services.audit_service import AuditService
from settlement_kernel.services.period_service import PeriodService
from settlement_services.dashboard import DashboardService

logger = get_logger("services.period_close")


class PeriodCloseService:
    """
    Close control for monthly financial periods.

    Contract:
        ``checklist`` is read-only.  ``lock`` and ``unlock`` each run as
        one unit of work on the supplied session.

    Guarantees:
        - The checklist that gated a lock is the one stored in its audit
          event.

    Non-goals:
        Does not fix blockers (collect debts, resolve counts); it reports
        them.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        control: SystemControl | None = None,
        roles: RolePolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._roles = roles or RolePolicy.default()
        self._periods = PeriodService(session, self._clock)
        self._audit = AuditService(session, self._clock)
        self._dashboard = DashboardService(session, self._clock, control)
        self._sales = SalesSelector(session)
        self._expenses = ExpenseSelector(session)
        self._inventory = InventorySelector(session)

    # -------------------------------------------------------------------------
    # Checklist
    # -------------------------------------------------------------------------

    def close_facts(self, period: FinancialPeriod) -> CloseFacts:
        sessions = self._inventory.status_counts(period.id)
        return CloseFacts(
            sales_with_debt=self._sales.count_with_debt(period.id),
            open_deals=self._sales.count_open_deals(period.id),
            open_discrepancies=self._inventory.open_discrepancy_count(),
            unconfirmed_corrections=self._expenses.unconfirmed_correction_count(period.id),
            net_profit=self._dashboard.kpis_for_month(period.year, period.month).net_profit,
            confirmed_sessions=sessions[InventorySessionStatus.CONFIRMED],
            unfinished_sessions=(
                sessions[InventorySessionStatus.PENDING]
                + sessions[InventorySessionStatus.DISCREPANCY]
            ),
        )

    def checklist(self, period_id: UUID) -> tuple[ChecklistItem, ...]:
        period = self._periods.get(period_id)
        return evaluate_checklist(self.close_facts(period))

    def blockers(self, period_id: UUID) -> list[str]:
        return blockers(self.checklist(period_id))

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def lock(self, actor: Actor, period_id: UUID, reason: str | None = None) -> FinancialPeriod:
        """Lock the period once the checklist passes."""
        self._roles.require(actor, Operation.PERIODS_LOCK)
        with unit_of_work(self._session, "periods.lock", actor):
            period = self._periods.get(period_id, for_update=True)
            items = evaluate_checklist(self.close_facts(period))
            failing = blockers(items)
            if failing:
                logger.warning(
                    "period_close_blocked",
                    extra={
                        "period_id": str(period.id),
                        "year": period.year,
                        "month": period.month,
                        "blockers": failing,
                    },
                )
                raise PeriodCloseBlockedError(period.year, period.month, failing)

            period = self._periods.lock(period.id, actor.user_id, reason)
            self._audit.record(
                AuditAction.PERIOD_LOCKED,
                "FinancialPeriod",
                period.id,
                actor.user_id,
                {
                    "period": period.label,
                    "reason": reason,
                    "checklist": {item.key: item.ok for item in items},
                },
            )
        return period

    def unlock(self, actor: Actor, period_id: UUID, reason: str) -> FinancialPeriod:
        self._roles.require(actor, Operation.PERIODS_UNLOCK)
        with unit_of_work(self._session, "periods.unlock", actor):
            period = self._periods.unlock(period_id, actor.user_id, reason)
            self._audit.record(
                AuditAction.PERIOD_UNLOCKED,
                "FinancialPeriod",
                period.id,
                actor.user_id,
                {"period": period.label, "reason": period.unlock_reason},
            )
        return period
