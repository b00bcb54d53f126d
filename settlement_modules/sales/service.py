"""
Sales Service (``settlement_modules.sales.service``).

Responsibility
--------------
The sales ledger: creating sales from ARRIVED stock, taking payments,
returns that put stock back, exchanges that return some lines and add
others in one step, and deleting a sale outright.

Architecture position
---------------------
**Modules layer**.  Balance arithmetic comes from
``settlement_engines.sales``; invoice and return numbers from the kernel
``DocumentNumberService``; container figures are refreshed through
``ContainerRecomputePipeline`` for every container a sale touches.

Invariants enforced
-------------------
* total == paid + debt on every sale after every operation.
* Stock never goes negative; only ARRIVED stock is sold.
* A sale line's unit cost is frozen at sale time.
* Returned quantity per line never exceeds the sold quantity.
* Payments are capped at the outstanding debt.
* Locks are taken sale first, then containers, then stock rows, each
  group in id order.
* A sale is deleted only as a whole, by SUPER_ADMIN, in an open period.

Failure modes
-------------
* ``ValidationError`` for bad lines, modes, missing due dates.
* ``ContainerNotArrivedError``, ``InsufficientStockError``,
  ``CreditLimitExceededError``, ``NoDebtError``,
  ``SaleFullyReturnedError``, ``OverReturnError``, ``PeriodLockedError``.

Audit relevance
---------------
SALE_CREATED, PAYMENT_ADDED, RETURN_CREATED, EXCHANGE_CREATED and
SALE_DELETED events.

Usage::

    service = SalesService(session, clock=clock)
    sale = service.create_sale(
        actor, client_id, [SaleLineRequest(item_id, 5, Decimal("12"))],
        SaleMode.DEBT, paid_now=Decimal("20"), due_date=date(2024, 2, 15),
    )
    service.add_payment(actor, sale.id, Decimal("40"))
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_config.schema import DocumentNumbering
from settlement_engines.sales import (
    SaleBalance,
    apply_exchange,
    apply_return,
    exceeds_credit_limit,
    is_fully_returned,
    opening_balance,
    returnable_quantity,
    settle_payment,
)
from settlement_kernel.db.immutability import sale_deletion
from settlement_kernel.db.unit_of_work import unit_of_work
from settlement_kernel.domain.access import Actor, Operation, RolePolicy
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.statuses import SaleMode, SaleStatus
from settlement_kernel.domain.values import ZERO, quantize_amount, to_amount
from settlement_kernel.exceptions import (
    ContainerNotArrivedError,
    CreditLimitExceededError,
    InsufficientStockError,
    NoDebtError,
    NotFoundError,
    OverReturnError,
    SaleFullyReturnedError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models import (
    AuditAction,
    Client,
    Container,
    ContainerItem,
    Payment,
    ReturnItem,
    Sale,
    SaleItem,
    SaleReturn,
)
from settlement_kernel.selectors import SalesSelector
from settlement_kernel.services.audit_service import AuditService
from settlement_kernel.services.period_service import PeriodService
from settlement_kernel.services.sequence_service import DocumentNumberService
from settlement_modules.sales.models import (
    ExchangeResult,
    ReturnLineRequest,
    SaleLineRequest,
    merge_return_lines,
    merge_sale_lines,
    parse_mode,
)
from settlement_services.recompute import ContainerRecomputePipeline

logger = get_logger("modules.sales.service")


class SalesService:
    """
    Sales, payments, returns and exchanges.

    Contract
    --------
    * Every public method is one unit of work.
    * New sales belong to the period of today; payments, returns and
      exchanges are gated on the sale's own period.

    Guarantees
    ----------
    * A failed operation leaves stock, balances and document counters
      untouched.

    Non-goals
    ---------
    * Pricing rules and discounts.  The caller supplies unit prices or
      relies on the stock row's sale price.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        control: SystemControl | None = None,
        roles: RolePolicy | None = None,
        numbering: DocumentNumbering | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._roles = roles or RolePolicy.default()
        self._numbering = numbering or DocumentNumbering()
        self._periods = PeriodService(session, self._clock)
        self._audit = AuditService(session, self._clock)
        self._documents = DocumentNumberService(session, self._numbering.pad_width)
        self._pipeline = ContainerRecomputePipeline(session, control)
        self._selector = SalesSelector(session)

    # =========================================================================
    # Locking helpers
    # =========================================================================

    def _lock_sale(self, sale_id: UUID) -> Sale:
        sale = self._session.execute(
            select(Sale)
            .where(Sale.id == sale_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if sale is None:
            raise NotFoundError("Sale", sale_id)
        return sale

    def _lock_stock(
        self, item_ids: Iterable[UUID]
    ) -> tuple[dict[UUID, Container], dict[UUID, ContainerItem]]:
        """Lock the containers, then the stock rows, of ``item_ids``."""
        wanted = sorted(set(item_ids), key=str)
        owners = dict(
            self._session.execute(
                select(ContainerItem.id, ContainerItem.container_id).where(
                    ContainerItem.id.in_(wanted)
                )
            ).all()
        )
        for item_id in wanted:
            if item_id not in owners:
                raise NotFoundError("ContainerItem", item_id)

        containers = {
            container_id: self._pipeline.lock_container(container_id)
            for container_id in sorted(set(owners.values()), key=str)
        }
        items = {
            item.id: item
            for item in self._session.execute(
                select(ContainerItem)
                .where(ContainerItem.id.in_(wanted))
                .order_by(ContainerItem.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        }
        return containers, items

    # =========================================================================
    # Balance helpers
    # =========================================================================

    @staticmethod
    def _balance(sale: Sale) -> SaleBalance:
        return SaleBalance(
            total=sale.total_amount_usd,
            paid=sale.paid_amount_usd,
            debt=sale.debt_amount_usd,
        )

    def _write_balance(self, actor: Actor, sale: Sale, balance: SaleBalance) -> SaleStatus:
        self._session.flush()
        fully = is_fully_returned(
            Decimal(self._selector.returned_total(sale.id)),
            Decimal(self._selector.gross_total(sale.id)),
        )
        status = balance.status(returned_fully=fully)
        sale.total_amount_usd = balance.total
        sale.paid_amount_usd = balance.paid
        sale.debt_amount_usd = balance.debt
        sale.status = status.value
        sale.updated_by_id = actor.user_id
        self._session.flush()
        return status

    # =========================================================================
    # Stock legs
    # =========================================================================

    def _take_stock(
        self,
        actor: Actor,
        lines: Sequence[SaleLineRequest],
        added_in_exchange: bool = False,
    ) -> tuple[list[SaleItem], Decimal, set[UUID]]:
        """
        Decrement stock for ``lines`` and build (unsaved) sale lines.

        Returns the lines, their total and the touched container ids.
        """
        containers, items = self._lock_stock(line.container_item_id for line in lines)
        sale_items = []
        total = ZERO
        for line in lines:
            item = items[line.container_item_id]
            container = containers[item.container_id]
            if not container.is_arrived:
                raise ContainerNotArrivedError(container.id, container.status)
            if line.quantity > item.quantity:
                raise InsufficientStockError(item.id, line.quantity, item.quantity)
            price = line.sale_price_usd or item.sale_price_usd
            if price is None or price <= ZERO:
                raise ValidationError(
                    f"No sale price given for stock item {item.id}",
                    field="sale_price_usd",
                )

            line_total = quantize_amount(line.quantity * price)
            sale_items.append(
                SaleItem(
                    container_item_id=item.id,
                    product_id=item.product_id,
                    quantity=line.quantity,
                    cost_per_unit_usd=item.cost_per_unit_usd,
                    sale_price_per_unit_usd=price,
                    line_total_usd=line_total,
                    added_in_exchange=added_in_exchange,
                    created_by_id=actor.user_id,
                )
            )
            item.quantity -= line.quantity
            item.updated_by_id = actor.user_id
            total += line_total
        self._session.flush()
        return sale_items, total, set(containers)

    def _return_leg(
        self,
        actor: Actor,
        sale: Sale,
        lines: Sequence[ReturnLineRequest],
        is_exchange: bool,
        reason: str | None,
    ) -> tuple[SaleReturn, Decimal, set[UUID]]:
        """Put returned units back into stock and write the return document."""
        sale_items = {
            si.id: si
            for si in self._session.execute(
                select(SaleItem).where(SaleItem.sale_id == sale.id)
            ).scalars()
        }
        returned = self._selector.returned_by_line(sale.id)

        amounts = []
        for line in lines:
            sale_item = sale_items.get(line.sale_item_id)
            if sale_item is None:
                raise NotFoundError("SaleItem", line.sale_item_id)
            returnable = returnable_quantity(sale_item.quantity, returned.get(sale_item.id, 0))
            if line.quantity > returnable:
                raise OverReturnError(sale_item.id, line.quantity, returnable)
            amount = quantize_amount(line.quantity * sale_item.sale_price_per_unit_usd)
            amounts.append((sale_item, line.quantity, amount))
        total = sum((amount for _, _, amount in amounts), ZERO)

        containers, items = self._lock_stock(si.container_item_id for si, _, _ in amounts)
        now = self._clock.now()
        sale_return = SaleReturn(
            sale_id=sale.id,
            return_number=self._documents.next_document_number(
                self._numbering.return_prefix, now
            ),
            total_return_usd=total,
            returned_at=now,
            is_exchange=is_exchange,
            reason=reason,
            created_by_id=actor.user_id,
        )
        self._session.add(sale_return)
        self._session.flush()

        for sale_item, quantity, amount in amounts:
            self._session.add(
                ReturnItem(
                    return_id=sale_return.id,
                    sale_item_id=sale_item.id,
                    quantity=quantity,
                    amount_usd=amount,
                    created_by_id=actor.user_id,
                )
            )
            item = items[sale_item.container_item_id]
            item.quantity += quantity
            item.updated_by_id = actor.user_id
        self._session.flush()
        return sale_return, total, set(containers)

    # =========================================================================
    # Sales
    # =========================================================================

    def create_sale(
        self,
        actor: Actor,
        client_id: UUID,
        lines: Sequence[SaleLineRequest],
        mode: SaleMode | str,
        paid_now: Decimal = ZERO,
        due_date: date | None = None,
        comment: str | None = None,
    ) -> Sale:
        """
        Sell ARRIVED stock to a client.

        DEBT and CONSIGNMENT need a due date; IMMEDIATE needs a positive
        ``paid_now``.  The paid part is recorded as a ``Payment``.
        """
        self._roles.require(actor, Operation.SALES_MANAGE)
        sale_mode = parse_mode(mode)
        paid_now = to_amount(paid_now, "paid_now")
        lines = merge_sale_lines(lines)
        if not lines:
            raise ValidationError("Add at least one item to the sale", field="lines")
        if paid_now < ZERO:
            raise ValidationError("Paid amount must not be negative", field="paid_now")
        if sale_mode.requires_due_date and due_date is None:
            raise ValidationError(f"{sale_mode.value} sales need a due date", field="due_date")
        if sale_mode is SaleMode.IMMEDIATE and paid_now <= ZERO:
            raise ValidationError("Immediate sales need a paid amount", field="paid_now")

        with unit_of_work(self._session, "sales.create", actor):
            period = self._periods.assert_open_for_date(self._clock.today(), actor.user_id)
            client = self._session.get(Client, client_id)
            if client is None:
                raise NotFoundError("Client", client_id)

            sale_items, total, touched = self._take_stock(actor, lines)
            if exceeds_credit_limit(total, paid_now, client.credit_limit_usd):
                logger.warning(
                    "credit_limit_exceeded",
                    extra={
                        "client_id": str(client.id),
                        "total": str(total),
                        "paid_now": str(paid_now),
                        "credit_limit": str(client.credit_limit_usd),
                    },
                )
                raise CreditLimitExceededError(
                    client.id, total - paid_now, client.credit_limit_usd
                )

            balance = opening_balance(total, paid_now)
            now = self._clock.now()
            sale = Sale(
                invoice_number=self._documents.next_document_number(
                    self._numbering.invoice_prefix, now
                ),
                client_id=client.id,
                period_id=period.id,
                mode=sale_mode.value,
                status=balance.status().value,
                total_amount_usd=balance.total,
                paid_amount_usd=balance.paid,
                debt_amount_usd=balance.debt,
                due_date=due_date,
                sold_at=now,
                comment=comment,
                created_by_id=actor.user_id,
            )
            self._session.add(sale)
            self._session.flush()
            for sale_item in sale_items:
                sale_item.sale_id = sale.id
                self._session.add(sale_item)
            if balance.paid > ZERO:
                self._session.add(
                    Payment(
                        sale_id=sale.id,
                        period_id=period.id,
                        amount_usd=balance.paid,
                        paid_at=now,
                        comment="Paid at sale",
                        created_by_id=actor.user_id,
                    )
                )
            self._session.flush()
            self._pipeline.recompute_many(touched)

            self._audit.record(
                AuditAction.SALE_CREATED,
                "Sale",
                sale.id,
                actor.user_id,
                {
                    "invoice_number": sale.invoice_number,
                    "client_id": client.id,
                    "mode": sale_mode,
                    "total_usd": balance.total,
                    "paid_usd": balance.paid,
                    "lines": len(sale_items),
                },
            )
            logger.info(
                "sale_created",
                extra={
                    "sale_id": str(sale.id),
                    "invoice_number": sale.invoice_number,
                    "mode": sale_mode.value,
                    "total_usd": str(balance.total),
                    "paid_usd": str(balance.paid),
                },
            )
        return sale

    def add_payment(
        self,
        actor: Actor,
        sale_id: UUID,
        amount_usd: Decimal,
        comment: str | None = None,
    ) -> Payment:
        """Apply a payment; anything above the outstanding debt is ignored."""
        self._roles.require(actor, Operation.SALES_MANAGE)
        requested = to_amount(amount_usd, "amount_usd")
        if requested <= ZERO:
            raise ValidationError("Payment amount must be positive", field="amount_usd")

        with unit_of_work(self._session, "sales.add_payment", actor):
            sale = self._lock_sale(sale_id)
            self._periods.assert_open_by_id(sale.period_id)
            if sale.debt_amount_usd <= ZERO:
                raise NoDebtError(sale.id)

            settlement = settle_payment(self._balance(sale), requested)
            payment = Payment(
                sale_id=sale.id,
                period_id=sale.period_id,
                amount_usd=settlement.applied,
                paid_at=self._clock.now(),
                comment=comment,
                created_by_id=actor.user_id,
            )
            self._session.add(payment)
            status = self._write_balance(actor, sale, settlement.balance)

            self._audit.record(
                AuditAction.PAYMENT_ADDED,
                "Sale",
                sale.id,
                actor.user_id,
                {
                    "payment_id": payment.id,
                    "requested_usd": requested,
                    "applied_usd": settlement.applied,
                    "debt_usd": settlement.balance.debt,
                },
            )
            logger.info(
                "payment_recorded",
                extra={
                    "sale_id": str(sale.id),
                    "requested_usd": str(requested),
                    "applied_usd": str(settlement.applied),
                    "status": status.value,
                },
            )
        return payment

    # =========================================================================
    # Returns and exchanges
    # =========================================================================

    def create_return(
        self,
        actor: Actor,
        sale_id: UUID,
        lines: Sequence[ReturnLineRequest],
        reason: str | None = None,
    ) -> SaleReturn:
        """
        Take goods back.  Debt is reduced first; paid is capped at the new
        total.  Returned units go back into their stock rows.
        """
        self._roles.require(actor, Operation.SALES_MANAGE)
        lines = merge_return_lines(lines)
        if not lines:
            raise ValidationError("Add at least one item to return", field="lines")

        with unit_of_work(self._session, "sales.create_return", actor):
            sale = self._lock_sale(sale_id)
            self._periods.assert_open_by_id(sale.period_id)
            if sale.status == SaleStatus.RETURNED:
                raise SaleFullyReturnedError(sale.id)

            sale_return, total, touched = self._return_leg(
                actor, sale, lines, is_exchange=False, reason=reason
            )
            status = self._write_balance(actor, sale, apply_return(self._balance(sale), total))
            self._pipeline.recompute_many(touched)

            self._audit.record(
                AuditAction.RETURN_CREATED,
                "SaleReturn",
                sale_return.id,
                actor.user_id,
                {
                    "sale_id": sale.id,
                    "return_number": sale_return.return_number,
                    "total_return_usd": total,
                    "status": status,
                },
            )
            logger.info(
                "sale_return_created",
                extra={
                    "sale_id": str(sale.id),
                    "return_number": sale_return.return_number,
                    "total_return_usd": str(total),
                    "status": status.value,
                },
            )
        return sale_return

    def create_exchange(
        self,
        actor: Actor,
        sale_id: UUID,
        add_lines: Sequence[SaleLineRequest],
        return_lines: Sequence[ReturnLineRequest] = (),
        reason: str | None = None,
    ) -> ExchangeResult:
        """
        Return some lines and add new ones on the same sale.

        total = old total - returned + added; paid is capped at the new
        total and the rest is debt.  New lines are flagged
        ``added_in_exchange``.
        """
        self._roles.require(actor, Operation.SALES_MANAGE)
        add_lines = merge_sale_lines(add_lines)
        return_lines = merge_return_lines(return_lines)
        if not add_lines:
            raise ValidationError("An exchange needs at least one new item", field="add_lines")

        with unit_of_work(self._session, "sales.create_exchange", actor):
            sale = self._lock_sale(sale_id)
            self._periods.assert_open_by_id(sale.period_id)

            sale_return = None
            return_total = ZERO
            touched: set[UUID] = set()
            if return_lines:
                sale_return, return_total, touched = self._return_leg(
                    actor, sale, return_lines, is_exchange=True, reason=reason
                )

            added, add_total, added_containers = self._take_stock(
                actor, add_lines, added_in_exchange=True
            )
            for sale_item in added:
                sale_item.sale_id = sale.id
                self._session.add(sale_item)
            self._session.flush()

            status = self._write_balance(
                actor, sale, apply_exchange(self._balance(sale), return_total, add_total)
            )
            self._pipeline.recompute_many(touched | added_containers)

            self._audit.record(
                AuditAction.EXCHANGE_CREATED,
                "Sale",
                sale.id,
                actor.user_id,
                {
                    "return_number": sale_return.return_number if sale_return else None,
                    "return_total_usd": return_total,
                    "add_total_usd": add_total,
                    "status": status,
                },
            )
            logger.info(
                "sale_exchange_created",
                extra={
                    "sale_id": str(sale.id),
                    "return_total_usd": str(return_total),
                    "add_total_usd": str(add_total),
                    "status": status.value,
                },
            )
        return ExchangeResult(
            sale_id=sale.id,
            sale_return=sale_return,
            added_items=tuple(added),
            return_total_usd=return_total,
            add_total_usd=add_total,
        )

    # =========================================================================
    # Deletion
    # =========================================================================

    def delete_sale(self, actor: Actor, sale_id: UUID) -> None:
        """
        Remove a sale with its lines, payments and returns.

        Each stock row gets back the units still out with the client
        (sold minus returned); every touched container is recomputed.
        The invoice number is not reused.
        """
        self._roles.require(actor, Operation.SALES_DELETE)

        with unit_of_work(self._session, "sales.delete", actor):
            sale = self._lock_sale(sale_id)
            self._periods.assert_open_by_id(sale.period_id)

            sale_items = list(
                self._session.execute(
                    select(SaleItem).where(SaleItem.sale_id == sale.id)
                ).scalars()
            )
            returned = self._selector.returned_by_line(sale.id)
            containers, items = self._lock_stock(si.container_item_id for si in sale_items)
            for sale_item in sale_items:
                outstanding = sale_item.quantity - returned.get(sale_item.id, 0)
                if outstanding > 0:
                    item = items[sale_item.container_item_id]
                    item.quantity += outstanding
                    item.updated_by_id = actor.user_id

            returns = list(
                self._session.execute(
                    select(SaleReturn).where(SaleReturn.sale_id == sale.id)
                ).scalars()
            )
            return_items = list(
                self._session.execute(
                    select(ReturnItem).where(
                        ReturnItem.return_id.in_([r.id for r in returns])
                    )
                ).scalars()
            )
            payments = list(
                self._session.execute(
                    select(Payment).where(Payment.sale_id == sale.id)
                ).scalars()
            )

            with sale_deletion(sale.id):
                for row in return_items:
                    self._session.delete(row)
                self._session.flush()
                for row in (*returns, *payments, *sale_items):
                    self._session.delete(row)
                self._session.flush()
                self._session.delete(sale)
                self._session.flush()
            self._pipeline.recompute_many(set(containers))

            self._audit.record(
                AuditAction.SALE_DELETED,
                "Sale",
                sale.id,
                actor.user_id,
                {
                    "invoice_number": sale.invoice_number,
                    "total_usd": sale.total_amount_usd,
                    "paid_usd": sale.paid_amount_usd,
                    "items": len(sale_items),
                    "returns": len(returns),
                    "payments": len(payments),
                },
            )
            logger.warning(
                "sale_deleted",
                extra={
                    "sale_id": str(sale.id),
                    "invoice_number": sale.invoice_number,
                    "containers": sorted(str(c) for c in containers),
                },
            )
