"""
Module: settlement_kernel.models.financial_period
Responsibility: ORM model for the monthly financial period that gates every
    money-affecting mutation.
Architecture position: Kernel > Models.  Imports db/base.py only.

Invariants enforced:
    - (year, month) is unique (uq_financial_period_month).
    - Status is OPEN or LOCKED; transitions happen only through
      ``PeriodService.lock`` / ``PeriodService.unlock``.
    - Rows are never deleted (db/immutability.py).

Audit relevance:
    lock/unlock actors, times and reasons are kept on the row and mirrored
    into the audit log.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.domain.statuses import PeriodStatus


class FinancialPeriod(TrackedBase):
    """
    One calendar month acting as the accounting lock boundary.

    Contract:
        Created OPEN on first access for its (year, month).  Locked only
        after the close checklist passes; unlocked only with a reason.

    Non-goals:
        Does not validate its own transitions; PeriodService does.
    """

    __tablename__ = "financial_periods"

    __table_args__ = (
        UniqueConstraint("year", "month", name="uq_financial_period_month"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_financial_period_month"),
        Index("idx_financial_period_status", "status"),
    )

    year: Mapped[int] = mapped_column(nullable=False)
    month: Mapped[int] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN.value,
        nullable=False,
    )

    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    locked_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    unlocked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    unlocked_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    unlock_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<FinancialPeriod {self.label}: {self.status}>"

    @property
    def label(self) -> str:
        return f"{self.month}.{self.year}"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_locked(self) -> bool:
        return self.status == PeriodStatus.LOCKED
