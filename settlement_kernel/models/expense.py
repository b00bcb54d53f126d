"""
Module: settlement_kernel.models.expense
Responsibility: ORM models for container expenses and their signed
    corrections.
Architecture position: Kernel > Models.

Invariants enforced:
    - An expense belongs to the financial period active when it was
      recorded; ``period_id`` never changes.
    - A correction inherits its expense's period.
    - Corrections count towards the container's expense total from the
      moment they are recorded.  ``is_confirmed`` only gates period lock.

Audit relevance:
    Every expense and correction carries its actor and recording time;
    confirmations carry the confirming actor.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.domain.statuses import ExpenseCategory


class ContainerExpense(TrackedBase):
    __tablename__ = "container_expenses"

    __table_args__ = (
        CheckConstraint("amount_usd > 0", name="ck_container_expense_amount"),
        Index("idx_container_expense_container", "container_id"),
        Index("idx_container_expense_period", "period_id"),
    )

    container_id: Mapped[UUID] = mapped_column(ForeignKey("containers.id"), nullable=False)
    period_id: Mapped[UUID] = mapped_column(ForeignKey("financial_periods.id"), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_usd: Mapped[Decimal] = mapped_column(nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<ContainerExpense {self.title}: {self.amount_usd}>"


class ExpenseCorrection(TrackedBase):
    __tablename__ = "expense_corrections"

    __table_args__ = (
        Index("idx_expense_correction_expense", "expense_id"),
        Index("idx_expense_correction_period_confirmed", "period_id", "is_confirmed"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        ForeignKey("container_expenses.id"), nullable=False
    )
    period_id: Mapped[UUID] = mapped_column(ForeignKey("financial_periods.id"), nullable=False)
    delta_usd: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    is_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        state = "confirmed" if self.is_confirmed else "unconfirmed"
        return f"<ExpenseCorrection {self.delta_usd} {state}>"
