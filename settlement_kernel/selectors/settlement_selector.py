"""
Settlement selector -- investor positions and payouts.

A position is one (container, investor) pair.  Paid amounts are summed
from the append-only ``InvestorPayout`` ledger on every call.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from settlement_kernel.models.container import Container
from settlement_kernel.models.investment import ContainerInvestment, InvestorPayout
from settlement_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PositionDTO:
    container_id: UUID
    container_name: str
    container_status: str
    investor_id: UUID
    invested_amount_usd: Decimal
    percentage_share: Decimal
    total_purchase_usd: Decimal
    total_expenses_usd: Decimal
    net_profit_usd: Decimal
    paid_usd: Decimal


class SettlementSelector(BaseSelector[ContainerInvestment]):

    def paid(self, container_id: UUID, investor_id: UUID) -> Decimal:
        return self.session.execute(
            select(func.coalesce(func.sum(InvestorPayout.amount_usd), 0)).where(
                InvestorPayout.container_id == container_id,
                InvestorPayout.investor_id == investor_id,
            )
        ).scalar_one()

    def paid_by_position(
        self, container_id: UUID | None = None
    ) -> dict[tuple[UUID, UUID], Decimal]:
        query = select(
            InvestorPayout.container_id,
            InvestorPayout.investor_id,
            func.sum(InvestorPayout.amount_usd),
        ).group_by(InvestorPayout.container_id, InvestorPayout.investor_id)
        if container_id is not None:
            query = query.where(InvestorPayout.container_id == container_id)
        return {
            (cid, iid): Decimal(total)
            for cid, iid, total in self.session.execute(query)
        }

    def positions(
        self,
        *,
        container_id: UUID | None = None,
        investor_id: UUID | None = None,
    ) -> list[PositionDTO]:
        query = (
            select(ContainerInvestment, Container)
            .join(Container, Container.id == ContainerInvestment.container_id)
            .order_by(Container.purchase_date, Container.name, ContainerInvestment.id)
        )
        if container_id is not None:
            query = query.where(ContainerInvestment.container_id == container_id)
        if investor_id is not None:
            query = query.where(ContainerInvestment.investor_id == investor_id)

        paid = self.paid_by_position(container_id)
        return [
            PositionDTO(
                container_id=inv.container_id,
                container_name=container.name,
                container_status=container.status,
                investor_id=inv.investor_id,
                invested_amount_usd=inv.invested_amount_usd,
                percentage_share=inv.percentage_share,
                total_purchase_usd=container.total_purchase_usd,
                total_expenses_usd=container.total_expenses_usd,
                net_profit_usd=container.net_profit_usd,
                paid_usd=paid.get((inv.container_id, inv.investor_id), Decimal("0")),
            )
            for inv, container in self.session.execute(query)
        ]

    def payouts_for_period(self, period_id: UUID) -> list[InvestorPayout]:
        return list(
            self.session.execute(
                select(InvestorPayout)
                .where(InvestorPayout.period_id == period_id)
                .order_by(InvestorPayout.payout_date, InvestorPayout.id)
            ).scalars()
        )
