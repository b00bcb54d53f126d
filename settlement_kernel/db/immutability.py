"""
Module: settlement_kernel.db.immutability
Responsibility: ORM-level enforcement of append-only and frozen columns.
Architecture position: Kernel > DB.  Imports models lazily at registration.

Invariants enforced:
    - InvestorPayout, Payment, SaleReturn, ReturnItem, AuditEvent,
      ManualStockEntry and InventorySessionItem never change once written.
    - InvestorPayout, AuditEvent and ManualStockEntry are never deleted.
    - Payment, SaleReturn, ReturnItem and SaleItem are deleted only while
      their sale is being deleted (``sale_deletion``).
    - SaleItem pricing is frozen at sale time: quantity, frozen unit cost,
      sale price and line total never change.
    - InventorySession snapshot columns (reference, title, period,
      submission time, discrepancy count) never change; only the lifecycle
      columns move.  A whole session may be deleted with its lines.
    - FinancialPeriod rows are never deleted.

    ``updated_at`` / ``updated_by_id`` are audit metadata and may always
    change.

Failure modes:
    - ImmutabilityViolationError raised from the flush; the enclosing
      unit of work rolls back.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

from sqlalchemy import event, inspect, select

from settlement_kernel.exceptions import ImmutabilityViolationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA = frozenset({"updated_at", "updated_by_id"})
_ALL = None

_deleting_sales: ContextVar[frozenset[UUID]] = ContextVar(
    "settlement_deleting_sales", default=frozenset()
)


@contextmanager
def sale_deletion(sale_id: UUID) -> Iterator[None]:
    """Allow the rows owned by ``sale_id`` to be deleted inside the block."""
    token = _deleting_sales.set(_deleting_sales.get() | {sale_id})
    try:
        yield
    finally:
        _deleting_sales.reset(token)


def _changed_columns(target) -> set[str]:
    state = inspect(target)
    return {
        attr.key
        for attr in state.mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    }


def _reject(target, operation: str, reason: str) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "attempted": operation,
        },
    )
    raise ImmutabilityViolationError(entity_type, str(target.id), reason)


def _frozen_update_guard(frozen: frozenset[str] | None):
    def _before_update(mapper, connection, target):
        changed = _changed_columns(target) - _AUDIT_METADATA
        blocked = changed if frozen is None else changed & frozen
        if blocked:
            _reject(target, "UPDATE", f"columns {sorted(blocked)} are immutable")

    return _before_update


def _delete_guard(mapper, connection, target):
    _reject(target, "DELETE", "rows of this kind are never deleted")


def _owning_sale_id(connection, target) -> UUID | None:
    from settlement_kernel.models import ReturnItem, SaleReturn

    if isinstance(target, ReturnItem):
        return connection.execute(
            select(SaleReturn.sale_id).where(SaleReturn.id == target.return_id)
        ).scalar_one_or_none()
    return target.sale_id


def _sale_owned_delete_guard(mapper, connection, target):
    if _owning_sale_id(connection, target) in _deleting_sales.get():
        return
    _reject(target, "DELETE", "sale documents are removed only with their sale")


def _rules():
    from settlement_kernel.models import (
        AuditEvent,
        FinancialPeriod,
        InventorySession,
        InventorySessionItem,
        InvestorPayout,
        ManualStockEntry,
        Payment,
        ReturnItem,
        SaleItem,
        SaleReturn,
    )

    # (model, frozen columns or _ALL, delete listener or None)
    return [
        (InvestorPayout, _ALL, _delete_guard),
        (Payment, _ALL, _sale_owned_delete_guard),
        (SaleReturn, _ALL, _sale_owned_delete_guard),
        (ReturnItem, _ALL, _sale_owned_delete_guard),
        (AuditEvent, _ALL, _delete_guard),
        (ManualStockEntry, _ALL, _delete_guard),
        (InventorySessionItem, _ALL, None),
        (
            SaleItem,
            frozenset({
                "sale_id",
                "container_item_id",
                "product_id",
                "quantity",
                "cost_per_unit_usd",
                "sale_price_per_unit_usd",
                "line_total_usd",
            }),
            _sale_owned_delete_guard,
        ),
        (
            InventorySession,
            frozenset({
                "reference",
                "title",
                "period_id",
                "submitted_at",
                "discrepancy_count",
            }),
            None,
        ),
        (FinancialPeriod, frozenset({"year", "month"}), _delete_guard),
    ]


_registered: list[tuple[type, str, object]] = []


def register_immutability_listeners() -> None:
    """Install the guards (idempotent)."""
    if _registered:
        return
    for model, frozen, delete_fn in _rules():
        update_fn = _frozen_update_guard(frozen)
        event.listen(model, "before_update", update_fn)
        _registered.append((model, "before_update", update_fn))
        if delete_fn is not None:
            event.listen(model, "before_delete", delete_fn)
            _registered.append((model, "before_delete", delete_fn))
    logger.debug("immutability_listeners_registered", extra={"count": len(_registered)})


def unregister_immutability_listeners() -> None:
    """Remove the guards. FOR TESTING ONLY."""
    while _registered:
        model, name, fn = _registered.pop()
        if event.contains(model, name, fn):
            event.remove(model, name, fn)
