"""
Module: settlement_kernel.models.sale
Responsibility: ORM models for sales, their lines, payments, returns and
    returned lines.
Architecture position: Kernel > Models.

Invariants enforced:
    - total_amount_usd = paid_amount_usd + debt_amount_usd after every
      sales-ledger operation (maintained by settlement_engines.sales).
    - SaleItem freezes cost_per_unit_usd and sale_price_per_unit_usd at
      sale time; later unit cost recomputation never rewrites them.
    - Payments, returns and returned lines are append-only.
    - Invoice and return numbers are unique.

Audit relevance:
    Invoice / return numbers come from the document counter in the same
    transaction as the row they label.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.domain.statuses import SaleMode, SaleStatus


class Sale(TrackedBase):
    __tablename__ = "sales"

    __table_args__ = (
        Index("idx_sale_client", "client_id"),
        Index("idx_sale_period_status", "period_id", "status"),
        Index("idx_sale_sold_at", "sold_at"),
    )

    invoice_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    client_id: Mapped[UUID] = mapped_column(ForeignKey("clients.id"), nullable=False)
    period_id: Mapped[UUID] = mapped_column(ForeignKey("financial_periods.id"), nullable=False)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    total_amount_usd: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount_usd: Mapped[Decimal] = mapped_column(nullable=False)
    debt_amount_usd: Mapped[Decimal] = mapped_column(nullable=False)

    due_date: Mapped[date | None] = mapped_column(nullable=True)
    sold_at: Mapped[datetime] = mapped_column(nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Sale {self.invoice_number}: {self.status}>"


class SaleItem(TrackedBase):
    __tablename__ = "sale_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_item_quantity"),
        Index("idx_sale_item_sale", "sale_id"),
        Index("idx_sale_item_container_item", "container_item_id"),
    )

    sale_id: Mapped[UUID] = mapped_column(ForeignKey("sales.id"), nullable=False)
    container_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("container_items.id"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    cost_per_unit_usd: Mapped[Decimal] = mapped_column(nullable=False)
    sale_price_per_unit_usd: Mapped[Decimal] = mapped_column(nullable=False)
    line_total_usd: Mapped[Decimal] = mapped_column(nullable=False)
    # Lines added through an exchange rather than the original sale
    added_in_exchange: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Payment(TrackedBase):
    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount_usd > 0", name="ck_payment_amount"),
        Index("idx_payment_sale", "sale_id"),
    )

    sale_id: Mapped[UUID] = mapped_column(ForeignKey("sales.id"), nullable=False)
    period_id: Mapped[UUID] = mapped_column(ForeignKey("financial_periods.id"), nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(nullable=False)
    paid_at: Mapped[datetime] = mapped_column(nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)


class SaleReturn(TrackedBase):
    __tablename__ = "sale_returns"

    __table_args__ = (Index("idx_sale_return_sale", "sale_id"),)

    sale_id: Mapped[UUID] = mapped_column(ForeignKey("sales.id"), nullable=False)
    return_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    total_return_usd: Mapped[Decimal] = mapped_column(nullable=False)
    returned_at: Mapped[datetime] = mapped_column(nullable=False)
    is_exchange: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class ReturnItem(TrackedBase):
    __tablename__ = "return_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_return_item_quantity"),
        Index("idx_return_item_sale_item", "sale_item_id"),
    )

    return_id: Mapped[UUID] = mapped_column(ForeignKey("sale_returns.id"), nullable=False)
    sale_item_id: Mapped[UUID] = mapped_column(ForeignKey("sale_items.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(nullable=False)
