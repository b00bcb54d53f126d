"""
Module: settlement_kernel.models.audit_event
Responsibility: Append-only audit log of settlement actions.
Architecture position: Kernel > Models.

Invariants enforced:
    - Rows are never updated or deleted (db/immutability.py).
    - ``seq`` is allocated from the ``audit_event`` sequence counter and is
      strictly increasing in commit order per counter lock.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base


class AuditAction(str, Enum):
    CONTAINER_CREATED = "CONTAINER_CREATED"
    CONTAINER_ITEM_ADDED = "CONTAINER_ITEM_ADDED"
    CONTAINER_STATUS_CHANGED = "CONTAINER_STATUS_CHANGED"
    MANUAL_STOCK_ADDED = "MANUAL_STOCK_ADDED"
    STOCK_ITEM_UPDATED = "STOCK_ITEM_UPDATED"
    STOCK_ITEM_DELETED = "STOCK_ITEM_DELETED"

    EXPENSE_ADDED = "EXPENSE_ADDED"
    EXPENSE_CORRECTION_ADDED = "EXPENSE_CORRECTION_ADDED"
    EXPENSE_CORRECTION_CONFIRMED = "EXPENSE_CORRECTION_CONFIRMED"

    INVESTMENT_ADDED = "INVESTMENT_ADDED"
    PAYOUT_RECORDED = "PAYOUT_RECORDED"

    SALE_CREATED = "SALE_CREATED"
    PAYMENT_ADDED = "PAYMENT_ADDED"
    RETURN_CREATED = "RETURN_CREATED"
    EXCHANGE_CREATED = "EXCHANGE_CREATED"
    SALE_DELETED = "SALE_DELETED"

    INVENTORY_SUBMITTED = "INVENTORY_SUBMITTED"
    INVENTORY_CONFIRMED = "INVENTORY_CONFIRMED"
    INVENTORY_RESOLVED = "INVENTORY_RESOLVED"
    INVENTORY_SENT_TO_ADMIN = "INVENTORY_SENT_TO_ADMIN"
    INVENTORY_DELETED = "INVENTORY_DELETED"

    PERIOD_LOCKED = "PERIOD_LOCKED"
    PERIOD_UNLOCKED = "PERIOD_UNLOCKED"


class AuditEvent(Base):
    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(unique=True, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditEvent #{self.seq} {self.action} {self.entity_type}>"
