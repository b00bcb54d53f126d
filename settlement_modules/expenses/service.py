"""
Expense Service (``settlement_modules.expenses.service``).

Responsibility
--------------
Records container expenses and their corrections, confirms corrections,
and keeps the container's derived totals (expense total, unit cost, net
profit) in step through the recompute pipeline.

Architecture position
---------------------
**Modules layer**.  ``ExpenseService`` is the only writer of
``ContainerExpense`` and ``ExpenseCorrection`` rows.

Invariants enforced
-------------------
* An expense amount is positive; a correction delta is non-zero.
* Nothing is attached to a CLOSED container.
* A correction inherits the period of its expense and is gated on it.
* ``Container.total_expenses_usd`` equals expenses plus all corrections
  after every public call.

Failure modes
-------------
* ``ValidationError`` before any write for bad amounts, titles, reasons
  or categories.
* ``ContainerClosedError``, ``PeriodLockedError``, ``NotFoundError``.

Audit relevance
---------------
EXPENSE_ADDED, EXPENSE_CORRECTION_ADDED and EXPENSE_CORRECTION_CONFIRMED
events are written in the same transaction as the rows.

Usage::

    service = ExpenseService(session, clock=clock)
    expense = service.add_expense(
        actor, container_id, Decimal("350"), ExpenseCategory.CUSTOMS, "Customs duty",
    )
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.unit_of_work import unit_of_work
from settlement_kernel.domain.access import Actor, Operation, RolePolicy
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.statuses import ExpenseCategory
from settlement_kernel.domain.values import ZERO, to_amount
from settlement_kernel.exceptions import ContainerClosedError, NotFoundError, ValidationError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models import AuditAction, Container, ContainerExpense, ExpenseCorrection
from settlement_kernel.services.audit_service import AuditService
from settlement_kernel.services.period_service import PeriodService
from settlement_modules.expenses.models import ExpenseDraft, parse_category
from settlement_services.recompute import ContainerRecomputePipeline

logger = get_logger("modules.expenses.service")


class ExpenseService:
    """
    Expense and correction operations.

    Contract
    --------
    * ``add_expense``, ``add_correction`` and ``confirm_correction`` are
      units of work on the supplied session.
    * ``record_expense`` is flush-only and runs inside the caller's unit
      of work (container creation books its initial expense with it).

    Guarantees
    ----------
    * Role check happens before the unit of work is opened.
    * The container is recomputed before the audit event is written.

    Non-goals
    ---------
    * Expense approval workflows.  A correction is confirmed, never
      rejected; a wrong correction is fixed by another correction.
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
        self._pipeline = ContainerRecomputePipeline(session, control)

    # =========================================================================
    # Expenses
    # =========================================================================

    def record_expense(
        self,
        actor: Actor,
        container: Container,
        draft: ExpenseDraft,
        period_date: date | None = None,
    ) -> ContainerExpense:
        """Insert one expense row for an already locked container.  Flush-only."""
        if container.is_closed:
            raise ContainerClosedError(container.id)
        period = self._periods.assert_open_for_date(
            period_date or self._clock.today(), actor.user_id
        )

        expense = ContainerExpense(
            container_id=container.id,
            period_id=period.id,
            category=draft.category.value,
            title=draft.title.strip(),
            description=draft.description,
            amount_usd=draft.amount_usd,
            recorded_at=self._clock.now(),
            created_by_id=actor.user_id,
        )
        self._session.add(expense)
        self._session.flush()

        self._audit.record(
            AuditAction.EXPENSE_ADDED,
            "ContainerExpense",
            expense.id,
            actor.user_id,
            {
                "container_id": container.id,
                "period": period.label,
                "category": draft.category,
                "amount_usd": draft.amount_usd,
            },
        )
        logger.info(
            "expense_recorded",
            extra={
                "expense_id": str(expense.id),
                "container_id": str(container.id),
                "category": draft.category.value,
                "amount_usd": str(draft.amount_usd),
            },
        )
        return expense

    def add_expense(
        self,
        actor: Actor,
        container_id: UUID,
        amount_usd: Decimal,
        category: ExpenseCategory | str,
        title: str,
        description: str | None = None,
        period_date: date | None = None,
    ) -> ContainerExpense:
        """
        Book an expense against a container.

        ``period_date`` picks the financial period the expense belongs
        to (today when omitted); that period must be OPEN.
        """
        self._roles.require(actor, Operation.EXPENSES_ADD)
        draft = ExpenseDraft(
            amount_usd=amount_usd,
            category=parse_category(category),
            title=title,
            description=description,
        )

        with unit_of_work(self._session, "expenses.add", actor):
            container = self._pipeline.lock_container(container_id)
            expense = self.record_expense(actor, container, draft, period_date)
            self._pipeline.recompute(container.id)
        return expense

    # =========================================================================
    # Corrections
    # =========================================================================

    def _get_expense(self, expense_id: UUID) -> ContainerExpense:
        expense = self._session.get(ContainerExpense, expense_id)
        if expense is None:
            raise NotFoundError("ContainerExpense", expense_id)
        return expense

    def add_correction(
        self,
        actor: Actor,
        expense_id: UUID,
        delta_usd: Decimal,
        reason: str,
    ) -> ExpenseCorrection:
        """Append a signed adjustment to an expense, in the expense's period."""
        self._roles.require(actor, Operation.EXPENSES_CORRECT)
        delta = to_amount(delta_usd, "delta_usd")
        if delta == ZERO:
            raise ValidationError("Correction amount must not be zero", field="delta_usd")
        if not (reason or "").strip():
            raise ValidationError("A correction reason is required", field="reason")

        with unit_of_work(self._session, "expenses.correct", actor):
            expense = self._get_expense(expense_id)
            self._periods.assert_open_by_id(expense.period_id)
            container = self._pipeline.lock_container(expense.container_id)
            if container.is_closed:
                raise ContainerClosedError(container.id)

            correction = ExpenseCorrection(
                expense_id=expense.id,
                period_id=expense.period_id,
                delta_usd=delta,
                reason=reason.strip(),
                recorded_at=self._clock.now(),
                is_confirmed=False,
                created_by_id=actor.user_id,
            )
            self._session.add(correction)
            self._session.flush()

            result = self._pipeline.recompute(container.id)
            self._audit.record(
                AuditAction.EXPENSE_CORRECTION_ADDED,
                "ExpenseCorrection",
                correction.id,
                actor.user_id,
                {
                    "expense_id": expense.id,
                    "delta_usd": delta,
                    "reason": correction.reason,
                    "total_expenses_usd": result.total_expenses_usd,
                },
            )
            logger.info(
                "expense_correction_added",
                extra={
                    "correction_id": str(correction.id),
                    "expense_id": str(expense.id),
                    "delta_usd": str(delta),
                },
            )
        return correction

    def confirm_correction(self, actor: Actor, correction_id: UUID) -> ExpenseCorrection:
        """Mark a correction confirmed.  Confirming twice is a no-op."""
        self._roles.require(actor, Operation.EXPENSES_CORRECT)

        with unit_of_work(self._session, "expenses.confirm_correction", actor):
            correction = self._session.execute(
                select(ExpenseCorrection)
                .where(ExpenseCorrection.id == correction_id)
                .with_for_update()
            ).scalar_one_or_none()
            if correction is None:
                raise NotFoundError("ExpenseCorrection", correction_id)
            if correction.is_confirmed:
                logger.debug(
                    "expense_correction_already_confirmed",
                    extra={"correction_id": str(correction.id)},
                )
                return correction

            correction.is_confirmed = True
            correction.confirmed_at = self._clock.now()
            correction.confirmed_by_id = actor.user_id
            correction.updated_by_id = actor.user_id
            self._session.flush()

            self._audit.record(
                AuditAction.EXPENSE_CORRECTION_CONFIRMED,
                "ExpenseCorrection",
                correction.id,
                actor.user_id,
                {"expense_id": correction.expense_id, "delta_usd": correction.delta_usd},
            )
        return correction
