"""
Module: settlement_kernel.models.investment
Responsibility: ORM models for investor capital per container and the
    append-only payout ledger.
Architecture position: Kernel > Models.

Invariants enforced:
    - One ContainerInvestment per (container, investor); repeated
      contributions accumulate into ``invested_amount_usd``.
    - ``percentage_share`` is derived for every investment of a container
      whenever any of them changes.
    - InvestorPayout rows are never updated or deleted (db/immutability.py).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase


class ContainerInvestment(TrackedBase):
    __tablename__ = "container_investments"

    __table_args__ = (
        UniqueConstraint("container_id", "investor_id", name="uq_container_investment"),
        CheckConstraint("invested_amount_usd >= 0", name="ck_investment_amount"),
    )

    container_id: Mapped[UUID] = mapped_column(ForeignKey("containers.id"), nullable=False)
    investor_id: Mapped[UUID] = mapped_column(ForeignKey("investors.id"), nullable=False)
    invested_amount_usd: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    percentage_share: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    def __repr__(self) -> str:
        return f"<ContainerInvestment {self.investor_id}: {self.percentage_share}%>"


class InvestorPayout(TrackedBase):
    """Withdrawal against an investor's payable balance.  Append-only."""

    __tablename__ = "investor_payouts"

    __table_args__ = (
        CheckConstraint("amount_usd > 0", name="ck_investor_payout_amount"),
        Index("idx_investor_payout_position", "container_id", "investor_id"),
        Index("idx_investor_payout_period", "period_id"),
    )

    container_id: Mapped[UUID] = mapped_column(ForeignKey("containers.id"), nullable=False)
    investor_id: Mapped[UUID] = mapped_column(ForeignKey("investors.id"), nullable=False)
    period_id: Mapped[UUID] = mapped_column(ForeignKey("financial_periods.id"), nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(nullable=False)
    payout_date: Mapped[datetime] = mapped_column(nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
