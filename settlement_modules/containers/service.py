"""
Container Service (``settlement_modules.containers.service``).

Responsibility
--------------
Creates containers with their stock lines, initial capital and an
optional initial expense; adds stock lines; moves containers through
IN_TRANSIT -> ARRIVED -> CLOSED; maintains the manual stock container
and edits or removes individual stock rows.

Architecture position
---------------------
**Modules layer**.  Purchase arithmetic comes from
``settlement_engines.cost_allocation``; every derived column is written
by ``ContainerRecomputePipeline`` at the end of each operation.

Invariants enforced
-------------------
* ``total_purchase_usd`` never drops below the sum of the items' resolved
  purchase values; adding or growing a line raises it by at least the
  line's own purchase value.
* Status only moves forward.  Arrival stamps ``arrival_date``.
* Stock lines of a CLOSED or IN_TRANSIT container are not edited.
* A stock row referenced by a sale, a count or a manual receipt is never
  deleted.

Failure modes
-------------
* ``ValidationError`` (bad lines, rate, names) before any write.
* ``InvalidStatusTransitionError``, ``ContainerClosedError``,
  ``ContainerInTransitError``, ``StockInUseError``, ``NotFoundError``,
  ``PeriodLockedError``.

Audit relevance
---------------
CONTAINER_CREATED, CONTAINER_ITEM_ADDED, CONTAINER_STATUS_CHANGED,
MANUAL_STOCK_ADDED, STOCK_ITEM_UPDATED and STOCK_ITEM_DELETED events.

Usage::

    service = ContainerService(session, clock=clock, control=control)
    container = service.create_container(
        actor, "CN-2024-07", date(2024, 7, 1), Decimal("0.14"),
        items=[ItemLine(product_id, 100, unit_price_usd=Decimal("2.50"))],
        investments=[InvestmentLine(investor_id, Decimal("250"))],
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from settlement_engines.cost_allocation import (
    ItemLine,
    PurchaseTotals,
    compute_purchase_totals,
    grow_purchase_totals,
    merge_item_lines,
    resolve_item_purchase,
)
from settlement_engines.settlement import matches_expected
from settlement_kernel.db.unit_of_work import unit_of_work
from settlement_kernel.domain.access import Actor, Operation, RolePolicy
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.statuses import ContainerStatus
from settlement_kernel.domain.values import ZERO, to_amount
from settlement_kernel.exceptions import (
    ContainerClosedError,
    ContainerInTransitError,
    InvalidStatusTransitionError,
    NotFoundError,
    StockInUseError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models import (
    AuditAction,
    Container,
    ContainerInvestment,
    ContainerItem,
    InventorySessionItem,
    ManualStockEntry,
    Product,
    SaleItem,
)
from settlement_kernel.services.audit_service import AuditService
from settlement_kernel.services.period_service import PeriodService
from settlement_modules.containers.models import ManualStockLine, SettlementSummary, ShareRow
from settlement_modules.expenses.models import ExpenseDraft
from settlement_modules.expenses.service import ExpenseService
from settlement_modules.investments.models import InvestmentLine
from settlement_modules.investments.service import InvestmentService
from settlement_services.recompute import ContainerRecomputePipeline

logger = get_logger("modules.containers.service")


def _parse_status(value: ContainerStatus | str) -> ContainerStatus:
    try:
        return ContainerStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown container status {value!r}", field="status") from None


def _optional_amount(value, field: str) -> Decimal | None:
    return None if value is None else to_amount(value, field)


class ContainerService:
    """
    Container and stock operations.

    Contract
    --------
    * Every public mutating method is one unit of work; compound creation
      (items, capital, initial expense) commits or rolls back as a whole.
    * ``settlement_summary`` is read-only.

    Guarantees
    ----------
    * The container row is locked before its items or totals change.
    * Derived state is recomputed once at the end of each operation.

    Non-goals
    ---------
    * Product catalog maintenance.  Products must already exist.
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
        self._control = control or SystemControl()
        self._roles = roles or RolePolicy.default()
        self._periods = PeriodService(session, self._clock)
        self._audit = AuditService(session, self._clock)
        self._pipeline = ContainerRecomputePipeline(session, self._control)
        self._expenses = ExpenseService(session, self._clock, self._control, self._roles)
        self._investments = InvestmentService(session, self._clock, self._control, self._roles)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_product(self, product_id: UUID) -> None:
        if self._session.get(Product, product_id) is None:
            raise NotFoundError("Product", product_id)

    def _ensure_editable(self, container: Container, operation: str) -> None:
        if container.is_closed:
            raise ContainerClosedError(container.id)
        if container.is_in_transit:
            raise ContainerInTransitError(container.id, operation)

    def _find_item(self, container_id: UUID, product_id: UUID) -> ContainerItem | None:
        return self._session.execute(
            select(ContainerItem)
            .where(
                ContainerItem.container_id == container_id,
                ContainerItem.product_id == product_id,
            )
            .order_by(ContainerItem.created_at, ContainerItem.id)
            .limit(1)
            .with_for_update()
        ).scalar_one_or_none()

    def _lock_item_and_container(self, item_id: UUID) -> tuple[Container, ContainerItem]:
        """Lock the owning container first, then the item row."""
        container_id = self._session.execute(
            select(ContainerItem.container_id).where(ContainerItem.id == item_id)
        ).scalar_one_or_none()
        if container_id is None:
            raise NotFoundError("ContainerItem", item_id)
        container = self._pipeline.lock_container(container_id)
        item = self._session.execute(
            select(ContainerItem)
            .where(ContainerItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if item is None:
            raise NotFoundError("ContainerItem", item_id)
        return container, item

    def _grow_purchase(self, container: Container, added_usd: Decimal) -> None:
        totals = grow_purchase_totals(
            PurchaseTotals(container.total_purchase_usd, container.total_purchase_cny),
            container.exchange_rate,
            added_usd,
        )
        container.total_purchase_usd = totals.total_purchase_usd
        container.total_purchase_cny = totals.total_purchase_cny

    def _merge_into(
        self, actor: Actor, container: Container, line: ItemLine
    ) -> tuple[ContainerItem, Decimal]:
        """
        Add ``line`` to the container's row for the product, creating it
        when absent.  Returns the row and the purchase growth to book.

        Quantities add up; a newly given unit or sale price replaces the
        old one; line totals accumulate.
        """
        item = self._find_item(container.id, line.product_id)
        if item is None:
            item = ContainerItem(
                container_id=container.id,
                product_id=line.product_id,
                quantity=line.quantity,
                cost_per_unit_usd=ZERO,
                purchase_price_usd=line.unit_price_usd,
                line_total_usd=line.line_total_usd,
                sale_price_usd=line.sale_price_usd,
                created_by_id=actor.user_id,
            )
            self._session.add(item)
            self._session.flush()
            return item, line.purchase_usd

        before = resolve_item_purchase(item.quantity, item.purchase_price_usd, item.line_total_usd)
        item.quantity += line.quantity
        if line.unit_price_usd is not None:
            item.purchase_price_usd = line.unit_price_usd
        if line.sale_price_usd is not None:
            item.sale_price_usd = line.sale_price_usd
        if line.line_total_usd is not None:
            item.line_total_usd = (item.line_total_usd or ZERO) + line.line_total_usd
        item.updated_by_id = actor.user_id
        self._session.flush()

        after = resolve_item_purchase(item.quantity, item.purchase_price_usd, item.line_total_usd)
        return item, max(line.purchase_usd, after - before)

    # =========================================================================
    # Containers
    # =========================================================================

    def create_container(
        self,
        actor: Actor,
        name: str,
        purchase_date: date,
        exchange_rate: Decimal,
        total_purchase_cny: Decimal = ZERO,
        items: Sequence[ItemLine] = (),
        investments: Sequence[InvestmentLine] = (),
        initial_expense: ExpenseDraft | None = None,
    ) -> Container:
        """
        Create an IN_TRANSIT container.

        The USD purchase total is the larger of the CNY amount at
        ``exchange_rate`` and the sum of the line purchases; lines of the
        same product are merged first.
        """
        self._roles.require(actor, Operation.CONTAINERS_MANAGE)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Container name is required", field="name")
        rate = to_amount(exchange_rate, "exchange_rate")
        cny = to_amount(total_purchase_cny, "total_purchase_cny")
        lines = merge_item_lines(items)
        totals = compute_purchase_totals(cny, rate, lines)

        with unit_of_work(self._session, "containers.create", actor):
            self._periods.assert_open_for_date(self._clock.today(), actor.user_id)
            for line in lines:
                self._require_product(line.product_id)

            container = Container(
                name=name,
                purchase_date=purchase_date,
                exchange_rate=rate,
                total_purchase_cny=totals.total_purchase_cny,
                total_purchase_usd=totals.total_purchase_usd,
                total_expenses_usd=ZERO,
                net_profit_usd=ZERO,
                status=ContainerStatus.IN_TRANSIT.value,
                is_manual_stock=False,
                created_by_id=actor.user_id,
            )
            self._session.add(container)
            self._session.flush()

            for line in lines:
                self._session.add(
                    ContainerItem(
                        container_id=container.id,
                        product_id=line.product_id,
                        quantity=line.quantity,
                        cost_per_unit_usd=ZERO,
                        purchase_price_usd=line.unit_price_usd,
                        line_total_usd=line.line_total_usd,
                        sale_price_usd=line.sale_price_usd,
                        created_by_id=actor.user_id,
                    )
                )
            self._session.flush()

            for investment in investments:
                self._investments.accumulate(actor, container, investment)
            if initial_expense is not None:
                self._expenses.record_expense(actor, container, initial_expense)

            result = self._pipeline.recompute(container.id)
            self._audit.record(
                AuditAction.CONTAINER_CREATED,
                "Container",
                container.id,
                actor.user_id,
                {
                    "name": name,
                    "exchange_rate": rate,
                    "total_purchase_usd": totals.total_purchase_usd,
                    "items": len(lines),
                    "investments": len(investments),
                    "matches_expected": result.matches_expected,
                },
            )
            logger.info(
                "container_created",
                extra={
                    "container_id": str(container.id),
                    "items": len(lines),
                    "total_purchase_usd": str(totals.total_purchase_usd),
                    "matches_expected": result.matches_expected,
                },
            )
        return container

    def add_item(
        self,
        actor: Actor,
        container_id: UUID,
        product_id: UUID,
        quantity: int,
        unit_price_usd: Decimal | None = None,
        line_total_usd: Decimal | None = None,
        sale_price_usd: Decimal | None = None,
    ) -> ContainerItem:
        """Add a stock line to a container, merging into an existing product row."""
        self._roles.require(actor, Operation.CONTAINERS_MANAGE)
        line = ItemLine(
            product_id=product_id,
            quantity=quantity,
            unit_price_usd=_optional_amount(unit_price_usd, "unit_price_usd"),
            line_total_usd=_optional_amount(line_total_usd, "line_total_usd"),
            sale_price_usd=_optional_amount(sale_price_usd, "sale_price_usd"),
        )

        with unit_of_work(self._session, "containers.add_item", actor):
            self._periods.assert_open_for_date(self._clock.today(), actor.user_id)
            container = self._pipeline.lock_container(container_id)
            self._ensure_editable(container, "add_item")
            self._require_product(line.product_id)

            item, added_usd = self._merge_into(actor, container, line)
            self._grow_purchase(container, added_usd)
            self._session.flush()
            self._pipeline.recompute(container.id)

            self._audit.record(
                AuditAction.CONTAINER_ITEM_ADDED,
                "ContainerItem",
                item.id,
                actor.user_id,
                {
                    "container_id": container.id,
                    "product_id": line.product_id,
                    "quantity": line.quantity,
                    "purchase_added_usd": added_usd,
                },
            )
            logger.info(
                "container_item_added",
                extra={
                    "container_id": str(container.id),
                    "item_id": str(item.id),
                    "quantity": line.quantity,
                    "purchase_added_usd": str(added_usd),
                },
            )
        return item

    def update_status(
        self,
        actor: Actor,
        container_id: UUID,
        status: ContainerStatus | str,
        arrival_date: date | None = None,
    ) -> Container:
        """
        Move a container forward.  Repeating the current status is a no-op;
        moving backwards raises ``InvalidStatusTransitionError``.
        """
        self._roles.require(actor, Operation.CONTAINERS_MANAGE)
        target = _parse_status(status)

        with unit_of_work(self._session, "containers.update_status", actor):
            container = self._pipeline.lock_container(container_id)
            current = container.container_status
            if target.rank < current.rank:
                raise InvalidStatusTransitionError(current.value, target.value)
            if target is current:
                return container

            container.status = target.value
            if target is ContainerStatus.ARRIVED or container.arrival_date is None:
                container.arrival_date = arrival_date or self._clock.today()
            container.updated_by_id = actor.user_id
            self._session.flush()

            self._audit.record(
                AuditAction.CONTAINER_STATUS_CHANGED,
                "Container",
                container.id,
                actor.user_id,
                {"from": current, "to": target, "arrival_date": container.arrival_date},
            )
            logger.info(
                "container_status_changed",
                extra={
                    "container_id": str(container.id),
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )
        return container

    # =========================================================================
    # Manual stock
    # =========================================================================

    def _manual_stock_container(self, actor: Actor) -> Container:
        container_id = self._session.execute(
            select(Container.id)
            .where(Container.is_manual_stock.is_(True))
            .order_by(Container.created_at, Container.id)
            .limit(1)
        ).scalar_one_or_none()
        if container_id is not None:
            return self._pipeline.lock_container(container_id)

        today = self._clock.today()
        container = Container(
            name=self._control.manual_stock_container_name,
            purchase_date=today,
            arrival_date=today,
            exchange_rate=Decimal("1"),
            total_purchase_cny=ZERO,
            total_purchase_usd=ZERO,
            total_expenses_usd=ZERO,
            net_profit_usd=ZERO,
            status=ContainerStatus.ARRIVED.value,
            is_manual_stock=True,
            created_by_id=actor.user_id,
        )
        self._session.add(container)
        self._session.flush()
        logger.info("manual_stock_container_created", extra={"container_id": str(container.id)})
        return container

    def add_manual_stock(
        self,
        actor: Actor,
        reason: str,
        lines: Sequence[ManualStockLine],
    ) -> list[ManualStockEntry]:
        """
        Receive stock that did not arrive in a container.

        Lines go into the manual stock container (created ARRIVED on first
        use); each line leaves an append-only ``ManualStockEntry``.
        """
        self._roles.require(actor, Operation.STOCK_MANAGE)
        if not (reason or "").strip():
            raise ValidationError("A reason is required for manual stock", field="reason")
        if not lines:
            raise ValidationError("Add at least one stock line", field="lines")

        with unit_of_work(self._session, "stock.add_manual", actor):
            self._periods.assert_open_for_date(self._clock.today(), actor.user_id)
            container = self._manual_stock_container(actor)
            self._ensure_editable(container, "add_manual_stock")

            entries = []
            for line in lines:
                self._require_product(line.product_id)
                item, added_usd = self._merge_into(actor, container, line)
                self._grow_purchase(container, added_usd)
                entry = ManualStockEntry(
                    container_item_id=item.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    purchase_amount_usd=line.purchase_usd,
                    reason=reason.strip(),
                    recorded_at=self._clock.now(),
                    created_by_id=actor.user_id,
                )
                self._session.add(entry)
                entries.append(entry)
            self._session.flush()
            self._pipeline.recompute(container.id)

            self._audit.record(
                AuditAction.MANUAL_STOCK_ADDED,
                "Container",
                container.id,
                actor.user_id,
                {
                    "reason": reason.strip(),
                    "lines": [
                        {
                            "product_id": e.product_id,
                            "quantity": e.quantity,
                            "amount_usd": e.purchase_amount_usd,
                        }
                        for e in entries
                    ],
                },
            )
            logger.info(
                "manual_stock_added",
                extra={"container_id": str(container.id), "lines": len(entries)},
            )
        return entries

    # =========================================================================
    # Stock rows
    # =========================================================================

    def update_stock_item(
        self,
        actor: Actor,
        item_id: UUID,
        quantity: int,
        sale_price_usd: Decimal | None = None,
    ) -> ContainerItem:
        """Set the on-hand quantity (and optionally the sale price) of one row."""
        self._roles.require(actor, Operation.STOCK_MANAGE)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError("Quantity must be a non-negative integer", field="quantity")
        price = None
        if sale_price_usd is not None:
            price = to_amount(sale_price_usd, "sale_price_usd")
            if price < ZERO:
                raise ValidationError("Sale price must not be negative", field="sale_price_usd")

        with unit_of_work(self._session, "stock.update_item", actor):
            self._periods.assert_open_for_date(self._clock.today(), actor.user_id)
            container, item = self._lock_item_and_container(item_id)
            self._ensure_editable(container, "update_stock_item")

            previous = item.quantity
            before = resolve_item_purchase(
                item.quantity, item.purchase_price_usd, item.line_total_usd
            )
            item.quantity = quantity
            if price is not None:
                item.sale_price_usd = price
            item.updated_by_id = actor.user_id
            after = resolve_item_purchase(
                item.quantity, item.purchase_price_usd, item.line_total_usd
            )
            self._grow_purchase(container, after - before)
            self._session.flush()
            self._pipeline.recompute(container.id)

            self._audit.record(
                AuditAction.STOCK_ITEM_UPDATED,
                "ContainerItem",
                item.id,
                actor.user_id,
                {
                    "container_id": container.id,
                    "quantity_before": previous,
                    "quantity_after": quantity,
                    "sale_price_usd": item.sale_price_usd,
                },
            )
            logger.info(
                "stock_item_updated",
                extra={
                    "item_id": str(item.id),
                    "quantity_before": previous,
                    "quantity_after": quantity,
                },
            )
        return item

    def _reference_count(self, item_id: UUID) -> int:
        total = 0
        for model in (SaleItem, InventorySessionItem, ManualStockEntry):
            total += self._session.execute(
                select(func.count()).select_from(model).where(model.container_item_id == item_id)
            ).scalar_one()
        return total

    def delete_stock_item(self, actor: Actor, item_id: UUID) -> None:
        """Remove a stock row that no sale, count or manual receipt refers to."""
        self._roles.require(actor, Operation.STOCK_MANAGE)

        with unit_of_work(self._session, "stock.delete_item", actor):
            self._periods.assert_open_for_date(self._clock.today(), actor.user_id)
            container, item = self._lock_item_and_container(item_id)
            self._ensure_editable(container, "delete_stock_item")
            if self._reference_count(item.id):
                raise StockInUseError(item.id)

            snapshot = {
                "container_id": container.id,
                "product_id": item.product_id,
                "quantity": item.quantity,
            }
            self._session.delete(item)
            self._session.flush()
            self._pipeline.recompute(container.id)

            self._audit.record(
                AuditAction.STOCK_ITEM_DELETED,
                "ContainerItem",
                item_id,
                actor.user_id,
                snapshot,
            )
            logger.info(
                "stock_item_deleted",
                extra={"item_id": str(item_id), "container_id": str(container.id)},
            )

    # =========================================================================
    # Reads
    # =========================================================================

    def settlement_summary(self, container_id: UUID) -> SettlementSummary:
        container = self._session.get(Container, container_id)
        if container is None:
            raise NotFoundError("Container", container_id)
        investments = self._session.execute(
            select(ContainerInvestment)
            .where(ContainerInvestment.container_id == container_id)
            .order_by(ContainerInvestment.created_at, ContainerInvestment.id)
        ).scalars()
        shares = tuple(
            ShareRow(
                investor_id=inv.investor_id,
                invested_usd=inv.invested_amount_usd,
                percentage_share=inv.percentage_share,
            )
            for inv in investments
        )
        invested = sum((row.invested_usd for row in shares), ZERO)
        return SettlementSummary(
            container_id=container.id,
            total_purchase_usd=container.total_purchase_usd,
            total_expenses_usd=container.total_expenses_usd,
            net_profit_usd=container.net_profit_usd,
            invested_total_usd=invested,
            matches_expected=matches_expected(
                invested,
                container.total_purchase_usd,
                container.total_expenses_usd,
                self._control.share_tolerance,
            ),
            shares=shares,
        )
