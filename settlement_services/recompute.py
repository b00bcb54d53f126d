"""
settlement_services.recompute -- single entry point for a container's
derived state.

Responsibility:
    Recomputes every derived column of one container from its source
    rows, in one fixed direction:

        expense total -> unit cost -> financials -> investor shares

    Module services call ``recompute`` once per touched container at the
    end of an operation instead of scattering individual recalculations.

Architecture position:
    Services -- stateful shell over the pure engines
    (cost_allocation, financials, settlement).  Flush-only; runs inside
    the caller's unit of work.

Invariants enforced:
    - The container row is locked FOR UPDATE before any derived column is
      written, so concurrent recomputes of one container serialize.
    - ``total_expenses_usd`` always equals the sum of expense amounts plus
      all of their corrections.
    - Unit cost is left unchanged when live quantity is zero.
    - Recomputing twice with no intervening mutation changes nothing.

Failure modes:
    - NotFoundError for an unknown container.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from settlement_engines.cost_allocation import compute_unit_cost
from settlement_engines.financials import (
    ContainerFinancials,
    ExpenseLine,
    SoldLine,
    compute_financials,
    total_expenses,
)
from settlement_engines.settlement import compute_shares, matches_expected
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.values import ZERO
from settlement_kernel.exceptions import NotFoundError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models import (
    Container,
    ContainerExpense,
    ContainerInvestment,
    ContainerItem,
    ExpenseCorrection,
    ReturnItem,
    SaleItem,
)

logger = get_logger("services.recompute")


@dataclass(frozen=True)
class ContainerRecomputeResult:
    container_id: UUID
    total_purchase_usd: Decimal
    total_expenses_usd: Decimal
    unit_cost_usd: Decimal | None
    financials: ContainerFinancials
    shares: dict[UUID, Decimal]
    invested_total: Decimal
    matches_expected: bool


class ContainerRecomputePipeline:
    """
    Derived-state pipeline for containers.

    Contract:
        Every method reads current rows (no cached totals) and writes the
        derived columns back on the session.  Never commits.
    """

    def __init__(self, session: Session, control: SystemControl | None = None):
        self._session = session
        self._control = control or SystemControl()

    # -------------------------------------------------------------------------
    # Row access
    # -------------------------------------------------------------------------

    def lock_container(self, container_id: UUID) -> Container:
        container = self._session.execute(
            select(Container)
            .where(Container.id == container_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if container is None:
            raise NotFoundError("Container", container_id)
        return container

    def _items(self, container_id: UUID) -> list[ContainerItem]:
        return list(
            self._session.execute(
                select(ContainerItem)
                .where(ContainerItem.container_id == container_id)
                .order_by(ContainerItem.created_at, ContainerItem.id)
                .with_for_update()
            ).scalars()
        )

    def _expense_lines(self, container_id: UUID) -> list[ExpenseLine]:
        corrections: dict[UUID, list[Decimal]] = {}
        rows = self._session.execute(
            select(ExpenseCorrection.expense_id, ExpenseCorrection.delta_usd)
            .join(ContainerExpense, ContainerExpense.id == ExpenseCorrection.expense_id)
            .where(ContainerExpense.container_id == container_id)
        )
        for expense_id, delta in rows:
            corrections.setdefault(expense_id, []).append(delta)

        expenses = self._session.execute(
            select(ContainerExpense.id, ContainerExpense.amount_usd).where(
                ContainerExpense.container_id == container_id
            )
        )
        return [
            ExpenseLine(amount_usd=amount, corrections=tuple(corrections.get(expense_id, ())))
            for expense_id, amount in expenses
        ]

    def _sold_lines(self, container_id: UUID) -> list[SoldLine]:
        returned = (
            select(
                ReturnItem.sale_item_id.label("sale_item_id"),
                func.sum(ReturnItem.quantity).label("returned"),
            )
            .group_by(ReturnItem.sale_item_id)
            .subquery()
        )
        rows = self._session.execute(
            select(
                SaleItem.quantity,
                func.coalesce(returned.c.returned, 0),
                SaleItem.sale_price_per_unit_usd,
                SaleItem.cost_per_unit_usd,
            )
            .join(ContainerItem, ContainerItem.id == SaleItem.container_item_id)
            .outerjoin(returned, returned.c.sale_item_id == SaleItem.id)
            .where(ContainerItem.container_id == container_id)
        )
        return [
            SoldLine(
                quantity=quantity,
                returned_quantity=int(returned_qty),
                sale_price_per_unit_usd=price,
                cost_per_unit_usd=cost,
            )
            for quantity, returned_qty, price, cost in rows
        ]

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def refresh_expense_total(self, container_id: UUID) -> Decimal:
        container = self.lock_container(container_id)
        container.total_expenses_usd = total_expenses(self._expense_lines(container_id))
        self._session.flush()
        return container.total_expenses_usd

    def recalc_unit_cost(self, container_id: UUID) -> Decimal | None:
        """
        Set every item's cost to (purchase + expenses) / live quantity.

        Returns the new unit cost, or None when live quantity is zero and
        the previous costs were kept.
        """
        container = self.lock_container(container_id)
        items = self._items(container_id)
        total_quantity = sum(item.quantity for item in items)
        unit_cost = compute_unit_cost(
            container.total_purchase_usd,
            container.total_expenses_usd,
            total_quantity,
        )
        if unit_cost is None:
            logger.debug(
                "unit_cost_skipped",
                extra={"container_id": str(container_id), "total_quantity": total_quantity},
            )
            return None

        for item in items:
            if item.cost_per_unit_usd != unit_cost:
                item.cost_per_unit_usd = unit_cost
        self._session.flush()
        logger.debug(
            "unit_cost_recalculated",
            extra={
                "container_id": str(container_id),
                "total_quantity": total_quantity,
                "unit_cost_usd": unit_cost,
            },
        )
        return unit_cost

    def recompute_financials(self, container_id: UUID) -> ContainerFinancials:
        container = self.lock_container(container_id)
        financials = compute_financials(
            self._sold_lines(container_id),
            self._expense_lines(container_id),
        )
        container.total_expenses_usd = financials.expenses
        container.net_profit_usd = financials.net_profit
        self._session.flush()
        logger.debug(
            "container_financials_recalculated",
            extra={
                "container_id": str(container_id),
                "revenue": financials.revenue,
                "cogs": financials.cogs,
                "expenses": financials.expenses,
                "net_profit": financials.net_profit,
            },
        )
        return financials

    def recalc_shares(self, container_id: UUID) -> dict[UUID, Decimal]:
        """Re-derive percentage_share for every investment of the container."""
        investments = list(
            self._session.execute(
                select(ContainerInvestment)
                .where(ContainerInvestment.container_id == container_id)
                .with_for_update()
            ).scalars()
        )
        shares = compute_shares({inv.id: inv.invested_amount_usd for inv in investments})
        for inv in investments:
            inv.percentage_share = shares[inv.id]
        self._session.flush()
        return shares

    def invested_total(self, container_id: UUID) -> Decimal:
        return self._session.execute(
            select(func.coalesce(func.sum(ContainerInvestment.invested_amount_usd), 0)).where(
                ContainerInvestment.container_id == container_id
            )
        ).scalar_one() or ZERO

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def recompute(self, container_id: UUID) -> ContainerRecomputeResult:
        """Recompute all derived state of one container."""
        self.refresh_expense_total(container_id)
        unit_cost = self.recalc_unit_cost(container_id)
        financials = self.recompute_financials(container_id)
        shares = self.recalc_shares(container_id)

        container = self.lock_container(container_id)
        invested = Decimal(self.invested_total(container_id))
        result = ContainerRecomputeResult(
            container_id=container_id,
            total_purchase_usd=container.total_purchase_usd,
            total_expenses_usd=container.total_expenses_usd,
            unit_cost_usd=unit_cost,
            financials=financials,
            shares=shares,
            invested_total=invested,
            matches_expected=matches_expected(
                invested,
                container.total_purchase_usd,
                container.total_expenses_usd,
                self._control.share_tolerance,
            ),
        )
        logger.info(
            "container_recomputed",
            extra={
                "container_id": str(container_id),
                "net_profit_usd": financials.net_profit,
                "unit_cost_usd": unit_cost,
                "matches_expected": result.matches_expected,
            },
        )
        return result

    def recompute_many(self, container_ids) -> list[ContainerRecomputeResult]:
        """Recompute several containers in a stable order (sorted ids)."""
        return [self.recompute(cid) for cid in sorted(set(container_ids), key=str)]
