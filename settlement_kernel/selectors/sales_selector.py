"""
Sales selector -- read-side queries over sales, lines and returns.

Returns DTOs or plain aggregates.  Returned quantities are always summed
from ``ReturnItem`` rows; no returned counter is stored on a sale line.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from settlement_kernel.domain.statuses import SaleStatus
from settlement_kernel.models.catalog import Client
from settlement_kernel.models.container import ContainerItem
from settlement_kernel.models.sale import ReturnItem, Sale, SaleItem, SaleReturn
from settlement_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class SoldLineDTO:
    """One sale line with the quantity returned against it so far."""

    sale_item_id: UUID
    sale_id: UUID
    container_id: UUID
    container_item_id: UUID
    product_id: UUID
    quantity: int
    returned_quantity: int
    sale_price_per_unit_usd: Decimal
    cost_per_unit_usd: Decimal


@dataclass(frozen=True)
class OpenDebtDTO:
    sale_id: UUID
    invoice_number: str
    client_id: UUID
    client_name: str
    debt_amount_usd: Decimal
    due_date: date | None


class SalesSelector(BaseSelector[Sale]):

    def _returned_subquery(self):
        return (
            select(
                ReturnItem.sale_item_id.label("sale_item_id"),
                func.sum(ReturnItem.quantity).label("returned"),
            )
            .group_by(ReturnItem.sale_item_id)
            .subquery()
        )

    def sold_lines(
        self,
        *,
        sold_from: datetime | None = None,
        sold_to: datetime | None = None,
        container_id: UUID | None = None,
        period_id: UUID | None = None,
    ) -> list[SoldLineDTO]:
        """Sale lines filtered by sale time ``[sold_from, sold_to)``, container or period."""
        returned = self._returned_subquery()
        query = (
            select(
                SaleItem.id,
                SaleItem.sale_id,
                ContainerItem.container_id,
                SaleItem.container_item_id,
                SaleItem.product_id,
                SaleItem.quantity,
                func.coalesce(returned.c.returned, 0),
                SaleItem.sale_price_per_unit_usd,
                SaleItem.cost_per_unit_usd,
            )
            .join(Sale, Sale.id == SaleItem.sale_id)
            .join(ContainerItem, ContainerItem.id == SaleItem.container_item_id)
            .outerjoin(returned, returned.c.sale_item_id == SaleItem.id)
            .order_by(Sale.sold_at, SaleItem.id)
        )
        if sold_from is not None:
            query = query.where(Sale.sold_at >= sold_from)
        if sold_to is not None:
            query = query.where(Sale.sold_at < sold_to)
        if container_id is not None:
            query = query.where(ContainerItem.container_id == container_id)
        if period_id is not None:
            query = query.where(Sale.period_id == period_id)

        return [
            SoldLineDTO(
                sale_item_id=row[0],
                sale_id=row[1],
                container_id=row[2],
                container_item_id=row[3],
                product_id=row[4],
                quantity=row[5],
                returned_quantity=int(row[6]),
                sale_price_per_unit_usd=row[7],
                cost_per_unit_usd=row[8],
            )
            for row in self.session.execute(query)
        ]

    def returned_by_line(self, sale_id: UUID) -> dict[UUID, int]:
        rows = self.session.execute(
            select(ReturnItem.sale_item_id, func.sum(ReturnItem.quantity))
            .join(SaleItem, SaleItem.id == ReturnItem.sale_item_id)
            .where(SaleItem.sale_id == sale_id)
            .group_by(ReturnItem.sale_item_id)
        )
        return {sale_item_id: int(qty) for sale_item_id, qty in rows}

    def returned_total(self, sale_id: UUID) -> Decimal:
        return self.session.execute(
            select(func.coalesce(func.sum(SaleReturn.total_return_usd), 0)).where(
                SaleReturn.sale_id == sale_id
            )
        ).scalar_one()

    def gross_total(self, sale_id: UUID) -> Decimal:
        """Value of every line ever sold on the sale, exchange additions included."""
        return self.session.execute(
            select(func.coalesce(func.sum(SaleItem.line_total_usd), 0)).where(
                SaleItem.sale_id == sale_id
            )
        ).scalar_one()

    def debt_total(
        self,
        sold_from: datetime,
        sold_to: datetime,
        container_id: UUID | None = None,
    ) -> Decimal:
        query = select(func.coalesce(func.sum(Sale.debt_amount_usd), 0)).where(
            Sale.sold_at >= sold_from,
            Sale.sold_at < sold_to,
            Sale.debt_amount_usd > 0,
        )
        if container_id is not None:
            touching = (
                select(SaleItem.sale_id)
                .join(ContainerItem, ContainerItem.id == SaleItem.container_item_id)
                .where(ContainerItem.container_id == container_id)
            )
            query = query.where(Sale.id.in_(touching))
        return self.session.execute(query).scalar_one()

    def count_with_debt(self, period_id: UUID) -> int:
        return self.session.execute(
            select(func.count(Sale.id)).where(
                Sale.period_id == period_id,
                Sale.debt_amount_usd > 0,
            )
        ).scalar_one()

    def count_open_deals(self, period_id: UUID) -> int:
        return self.session.execute(
            select(func.count(Sale.id)).where(
                Sale.period_id == period_id,
                Sale.status.in_([SaleStatus.DEBT.value, SaleStatus.PARTIALLY_PAID.value]),
            )
        ).scalar_one()

    def open_debts(self) -> list[OpenDebtDTO]:
        rows = self.session.execute(
            select(Sale, Client.name)
            .join(Client, Client.id == Sale.client_id)
            .where(Sale.debt_amount_usd > 0)
            .order_by(Sale.due_date, Sale.sold_at)
        )
        return [
            OpenDebtDTO(
                sale_id=sale.id,
                invoice_number=sale.invoice_number,
                client_id=sale.client_id,
                client_name=client_name,
                debt_amount_usd=sale.debt_amount_usd,
                due_date=sale.due_date,
            )
            for sale, client_name in rows
        ]

    def sales_for_period(self, period_id: UUID) -> list[Sale]:
        return list(
            self.session.execute(
                select(Sale)
                .where(Sale.period_id == period_id)
                .order_by(Sale.sold_at, Sale.invoice_number)
            ).scalars()
        )
