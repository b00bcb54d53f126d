"""
Module: settlement_engines.cost_allocation
Responsibility:
    Purchase-side arithmetic for a container: resolving the purchase
    contribution of a stock line, merging input lines by product, deriving
    purchase totals in USD and CNY, and the weighted-average unit cost.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - total_purchase_usd >= sum of resolved line purchases.
    - One unit cost is shared by every item of a container:
      (purchase + expenses) / live quantity.
    - Zero live quantity yields no unit cost (callers keep the old one).

Failure modes:
    - ValidationError for non-positive quantities, negative prices or a
      non-positive exchange rate.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID

from settlement_engines.tracer import traced_engine
from settlement_kernel.domain.values import ZERO, quantize_amount
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.cost_allocation")


@dataclass(frozen=True)
class ItemLine:
    """One requested stock line of a container."""

    product_id: UUID
    quantity: int
    unit_price_usd: Decimal | None = None
    line_total_usd: Decimal | None = None
    sale_price_usd: Decimal | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValidationError("Item quantity must be positive", field="quantity")
        for name in ("unit_price_usd", "line_total_usd", "sale_price_usd"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} must not be negative", field=name)

    @property
    def purchase_usd(self) -> Decimal:
        return resolve_item_purchase(self.quantity, self.unit_price_usd, self.line_total_usd)


@dataclass(frozen=True)
class PurchaseTotals:
    total_purchase_usd: Decimal
    total_purchase_cny: Decimal


def resolve_item_purchase(
    quantity: int,
    unit_price_usd: Decimal | None = None,
    line_total_usd: Decimal | None = None,
) -> Decimal:
    """Line total when positive, else quantity x unit price when positive, else 0."""
    if line_total_usd is not None and line_total_usd > ZERO:
        return line_total_usd
    if quantity > 0 and unit_price_usd is not None and unit_price_usd > ZERO:
        return quantity * unit_price_usd
    return ZERO


def _first_set(current: Decimal | None, candidate: Decimal | None) -> Decimal | None:
    return current if current else candidate


def merge_item_lines(lines: Iterable[ItemLine]) -> list[ItemLine]:
    """
    Collapse lines by product, keeping first-seen order.

    Quantities and line totals add up; the first non-zero unit and sale
    prices win.
    """
    merged: dict[UUID, ItemLine] = {}
    for line in lines:
        existing = merged.get(line.product_id)
        if existing is None:
            merged[line.product_id] = line
            continue
        line_total = existing.line_total_usd
        if line.line_total_usd is not None:
            line_total = (line_total or ZERO) + line.line_total_usd
        merged[line.product_id] = replace(
            existing,
            quantity=existing.quantity + line.quantity,
            unit_price_usd=_first_set(existing.unit_price_usd, line.unit_price_usd),
            sale_price_usd=_first_set(existing.sale_price_usd, line.sale_price_usd),
            line_total_usd=line_total,
        )
    return list(merged.values())


def _check_rate(exchange_rate: Decimal) -> None:
    if exchange_rate <= ZERO:
        raise ValidationError("Exchange rate must be positive", field="exchange_rate")


@traced_engine("purchase_totals", "1.0", fingerprint_fields=("total_purchase_cny", "exchange_rate"))
def compute_purchase_totals(
    total_purchase_cny: Decimal,
    exchange_rate: Decimal,
    lines: Sequence[ItemLine] = (),
) -> PurchaseTotals:
    """
    Initial purchase totals of a new container.

    USD is the larger of the CNY amount at the spot rate and the sum of
    line purchases; CNY is re-derived from it so both stay consistent.
    """
    _check_rate(exchange_rate)
    if total_purchase_cny < ZERO:
        raise ValidationError("Purchase amount must not be negative", field="total_purchase_cny")
    base_usd = total_purchase_cny * exchange_rate
    items_usd = sum((line.purchase_usd for line in lines), ZERO)
    usd = quantize_amount(max(base_usd, items_usd))
    return PurchaseTotals(
        total_purchase_usd=usd,
        total_purchase_cny=quantize_amount(usd / exchange_rate),
    )


def grow_purchase_totals(
    current: PurchaseTotals,
    exchange_rate: Decimal,
    added_usd: Decimal,
) -> PurchaseTotals:
    """Totals after adding a line whose purchase contribution is ``added_usd``."""
    _check_rate(exchange_rate)
    if added_usd <= ZERO:
        return current
    usd = quantize_amount(current.total_purchase_usd + added_usd)
    return PurchaseTotals(
        total_purchase_usd=usd,
        total_purchase_cny=quantize_amount(usd / exchange_rate),
    )


@traced_engine(
    "unit_cost",
    "1.0",
    fingerprint_fields=("total_purchase_usd", "total_expenses_usd", "total_quantity"),
)
def compute_unit_cost(
    total_purchase_usd: Decimal,
    total_expenses_usd: Decimal,
    total_quantity: int,
) -> Decimal | None:
    """
    Weighted-average cost of the remaining stock.

    Returns None when ``total_quantity`` is zero.
    """
    if total_quantity <= 0:
        return None
    return quantize_amount((total_purchase_usd + total_expenses_usd) / total_quantity)
