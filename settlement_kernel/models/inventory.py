"""
Module: settlement_kernel.models.inventory
Responsibility: ORM models for warehouse count sessions and their frozen
    per-line snapshots.
Architecture position: Kernel > Models.

Invariants enforced:
    - InventorySessionItem rows are immutable once written: system_quantity
      is the stock at count time, never refreshed.
    - On InventorySession only the lifecycle columns (status, code,
      confirmation, resolution, sent-to-admin) may
      change; the snapshot columns are frozen (db/immutability.py).
    - A DISCREPANCY session never carries a numeric code.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.domain.statuses import InventorySessionStatus


class InventorySession(TrackedBase):
    __tablename__ = "inventory_sessions"

    __table_args__ = (
        Index("idx_inventory_session_status_code", "status", "code"),
        Index("idx_inventory_session_period", "period_id"),
    )

    # Opaque identifier shown instead of a code for discrepancy sessions
    reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    period_id: Mapped[UUID] = mapped_column(ForeignKey("financial_periods.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    code_issued_at: Mapped[datetime | None] = mapped_column(nullable=True)
    discrepancy_count: Mapped[int] = mapped_column(default=0, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)

    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    sent_to_admin_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<InventorySession {self.reference}: {self.status}>"


class InventorySessionItem(TrackedBase):
    __tablename__ = "inventory_session_items"

    __table_args__ = (Index("idx_inventory_item_session", "session_id"),)

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_sessions.id"), nullable=False
    )
    container_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("container_items.id"), nullable=False
    )
    container_id: Mapped[UUID] = mapped_column(ForeignKey("containers.id"), nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    system_quantity: Mapped[int] = mapped_column(nullable=False)
    actual_quantity: Mapped[int] = mapped_column(nullable=False)
    difference: Mapped[int] = mapped_column(nullable=False)
