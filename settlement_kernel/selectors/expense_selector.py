"""
Expense selector -- expense and correction aggregates.

Range filters are half-open ``[start, end)`` on the recording time of
the row itself: an expense counts in the range it was recorded in, and
each correction in the range the correction was recorded in.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select

from settlement_kernel.models.expense import ContainerExpense, ExpenseCorrection
from settlement_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ExpenseDTO:
    id: UUID
    container_id: UUID
    period_id: UUID
    category: str
    title: str
    amount_usd: Decimal
    corrections_usd: Decimal
    unconfirmed_corrections: int
    recorded_at: datetime

    @property
    def effective_amount_usd(self) -> Decimal:
        return self.amount_usd + self.corrections_usd


class ExpenseSelector(BaseSelector[ContainerExpense]):

    def recorded_total(
        self,
        start: datetime,
        end: datetime,
        container_id: UUID | None = None,
    ) -> Decimal:
        """Expense amounts plus correction deltas recorded in ``[start, end)``."""
        amounts = select(func.coalesce(func.sum(ContainerExpense.amount_usd), 0)).where(
            ContainerExpense.recorded_at >= start,
            ContainerExpense.recorded_at < end,
        )
        deltas = (
            select(func.coalesce(func.sum(ExpenseCorrection.delta_usd), 0))
            .join(ContainerExpense, ContainerExpense.id == ExpenseCorrection.expense_id)
            .where(
                ExpenseCorrection.recorded_at >= start,
                ExpenseCorrection.recorded_at < end,
            )
        )
        if container_id is not None:
            amounts = amounts.where(ContainerExpense.container_id == container_id)
            deltas = deltas.where(ContainerExpense.container_id == container_id)
        return Decimal(self.session.execute(amounts).scalar_one()) + Decimal(
            self.session.execute(deltas).scalar_one()
        )

    def effective_total_by_container(self) -> dict[UUID, Decimal]:
        """All-time amount plus corrections per container."""
        totals: dict[UUID, Decimal] = {}
        for container_id, amount in self.session.execute(
            select(ContainerExpense.container_id, func.sum(ContainerExpense.amount_usd))
            .group_by(ContainerExpense.container_id)
        ):
            totals[container_id] = Decimal(amount)
        for container_id, delta in self.session.execute(
            select(ContainerExpense.container_id, func.sum(ExpenseCorrection.delta_usd))
            .join(ContainerExpense, ContainerExpense.id == ExpenseCorrection.expense_id)
            .group_by(ContainerExpense.container_id)
        ):
            totals[container_id] = totals.get(container_id, Decimal("0")) + Decimal(delta)
        return totals

    def unconfirmed_correction_count(self, period_id: UUID) -> int:
        return self.session.execute(
            select(func.count(ExpenseCorrection.id)).where(
                ExpenseCorrection.period_id == period_id,
                ExpenseCorrection.is_confirmed.is_(False),
            )
        ).scalar_one()

    def expenses_for_period(self, period_id: UUID) -> list[ExpenseDTO]:
        corrections = (
            select(
                ExpenseCorrection.expense_id.label("expense_id"),
                func.sum(ExpenseCorrection.delta_usd).label("delta"),
                func.sum(case((ExpenseCorrection.is_confirmed.is_(False), 1), else_=0)).label(
                    "unconfirmed"
                ),
            )
            .group_by(ExpenseCorrection.expense_id)
            .subquery()
        )
        rows = self.session.execute(
            select(ContainerExpense, corrections.c.delta, corrections.c.unconfirmed)
            .outerjoin(corrections, corrections.c.expense_id == ContainerExpense.id)
            .where(ContainerExpense.period_id == period_id)
            .order_by(ContainerExpense.recorded_at, ContainerExpense.id)
        )
        return [
            ExpenseDTO(
                id=expense.id,
                container_id=expense.container_id,
                period_id=expense.period_id,
                category=expense.category,
                title=expense.title,
                amount_usd=expense.amount_usd,
                corrections_usd=Decimal(delta or 0),
                unconfirmed_corrections=int(unconfirmed or 0),
                recorded_at=expense.recorded_at,
            )
            for expense, delta, unconfirmed in rows
        ]
