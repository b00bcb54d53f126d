"""
Module: settlement_kernel.models.container
Responsibility: ORM models for purchase batches (containers), their stock
    lines and manual stock receipts.
Architecture position: Kernel > Models.

Invariants enforced:
    - One ContainerItem per (container, product) (uq_container_item_product).
    - ContainerItem.quantity is never negative (ck_container_item_quantity).
    - total_purchase_usd, total_expenses_usd, net_profit_usd and every
      item's cost_per_unit_usd are derived columns written only by the
      recompute pipeline (settlement_services.recompute).
    - Status moves IN_TRANSIT -> ARRIVED -> CLOSED and never back.

Audit relevance:
    ManualStockEntry keeps the reason and purchase amount of every stock
    receipt made outside a shipment.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.domain.statuses import ContainerStatus


class Container(TrackedBase):
    """
    One import purchase batch.

    Contract:
        Purchase amounts are kept in both CNY and USD at a single spot
        ``exchange_rate`` (USD per CNY).  ``total_purchase_usd`` never
        drops below the sum of its lines' purchase contributions.
    """

    __tablename__ = "containers"

    __table_args__ = (
        CheckConstraint("exchange_rate > 0", name="ck_container_exchange_rate"),
        Index("idx_container_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    purchase_date: Mapped[date] = mapped_column(nullable=False)
    arrival_date: Mapped[date | None] = mapped_column(nullable=True)
    exchange_rate: Mapped[Decimal] = mapped_column(nullable=False)

    total_purchase_cny: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total_purchase_usd: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total_expenses_usd: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    net_profit_usd: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ContainerStatus.IN_TRANSIT.value,
        nullable=False,
    )

    # The single holder for stock received outside any shipment
    is_manual_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Container {self.name}: {self.status}>"

    @property
    def container_status(self) -> ContainerStatus:
        return ContainerStatus(self.status)

    @property
    def is_closed(self) -> bool:
        return self.status == ContainerStatus.CLOSED

    @property
    def is_in_transit(self) -> bool:
        return self.status == ContainerStatus.IN_TRANSIT

    @property
    def is_arrived(self) -> bool:
        return self.status == ContainerStatus.ARRIVED


class ContainerItem(TrackedBase):
    """
    Live stock line for one product inside one container.

    ``quantity`` is decremented by sales and incremented by returns.
    ``purchase_price_usd`` and ``sale_price_usd`` are optional per-unit
    overrides, ``line_total_usd`` an optional purchase total for the line.
    ``cost_per_unit_usd`` is the shared weighted-average cost.
    """

    __tablename__ = "container_items"

    __table_args__ = (
        UniqueConstraint("container_id", "product_id", name="uq_container_item_product"),
        CheckConstraint("quantity >= 0", name="ck_container_item_quantity"),
        Index("idx_container_item_container", "container_id"),
    )

    container_id: Mapped[UUID] = mapped_column(ForeignKey("containers.id"), nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)

    quantity: Mapped[int] = mapped_column(default=0, nullable=False)
    cost_per_unit_usd: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    purchase_price_usd: Mapped[Decimal | None] = mapped_column(nullable=True)
    # Accumulated purchase amount entered per line, when given as a total
    line_total_usd: Mapped[Decimal | None] = mapped_column(nullable=True)
    sale_price_usd: Mapped[Decimal | None] = mapped_column(nullable=True)

    container: Mapped[Container] = relationship()

    def __repr__(self) -> str:
        return f"<ContainerItem {self.product_id} x{self.quantity}>"


class ManualStockEntry(TrackedBase):
    """Append-only record of stock added outside a shipment."""

    __tablename__ = "manual_stock_entries"

    container_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("container_items.id"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    purchase_amount_usd: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
