"""
Module: settlement_engines.financials
Responsibility:
    Container profit and loss from row snapshots: effective sold
    quantities (sold minus returned), revenue, cost of goods sold at the
    frozen sale-time unit cost, effective expenses (amount plus all
    corrections) and net profit.  Also the sold-percent projection.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Corrections count in the expense total whether confirmed or not.
    - net_profit = revenue - cogs - expenses.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from settlement_engines.tracer import traced_engine
from settlement_kernel.domain.statuses import ContainerStatus
from settlement_kernel.domain.values import HUNDRED, ZERO, quantize_amount


@dataclass(frozen=True)
class SoldLine:
    quantity: int
    returned_quantity: int
    sale_price_per_unit_usd: Decimal
    cost_per_unit_usd: Decimal

    @property
    def effective_quantity(self) -> int:
        return max(0, self.quantity - self.returned_quantity)

    @property
    def revenue(self) -> Decimal:
        return self.effective_quantity * self.sale_price_per_unit_usd

    @property
    def cogs(self) -> Decimal:
        return self.effective_quantity * self.cost_per_unit_usd


@dataclass(frozen=True)
class ExpenseLine:
    amount_usd: Decimal
    corrections: tuple[Decimal, ...] = field(default_factory=tuple)

    @property
    def effective_amount(self) -> Decimal:
        return self.amount_usd + sum(self.corrections, ZERO)


@dataclass(frozen=True)
class ContainerFinancials:
    revenue: Decimal
    cogs: Decimal
    expenses: Decimal
    net_profit: Decimal


def total_expenses(expenses: Iterable[ExpenseLine]) -> Decimal:
    return quantize_amount(sum((e.effective_amount for e in expenses), ZERO))


@traced_engine("container_financials", "1.0")
def compute_financials(
    sold_lines: Iterable[SoldLine],
    expenses: Iterable[ExpenseLine],
) -> ContainerFinancials:
    revenue = ZERO
    cogs = ZERO
    for line in sold_lines:
        revenue += line.revenue
        cogs += line.cogs
    expense_total = total_expenses(expenses)
    revenue = quantize_amount(revenue)
    cogs = quantize_amount(cogs)
    return ContainerFinancials(
        revenue=revenue,
        cogs=cogs,
        expenses=expense_total,
        net_profit=revenue - cogs - expense_total,
    )


def sold_percent(sold_quantity: int, current_quantity: int) -> Decimal:
    total = sold_quantity + current_quantity
    if total <= 0:
        return ZERO
    return quantize_amount(Decimal(sold_quantity) / Decimal(total) * HUNDRED)


def display_status(status: str, percent_sold: Decimal, sold_out_percent: Decimal) -> str:
    """CLOSED, SOLD_OUT, IN_PROGRESS or OPEN for the container overview."""
    if status == ContainerStatus.CLOSED:
        return "CLOSED"
    if percent_sold >= sold_out_percent:
        return "SOLD_OUT"
    if percent_sold > ZERO:
        return "IN_PROGRESS"
    return "OPEN"
