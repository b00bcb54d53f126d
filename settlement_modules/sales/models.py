"""
Sales Domain Models.

Request lines for sales, returns and exchanges, and the result type of
an exchange.  Lines naming the same stock row (or sale line) twice are
merged before any stock is touched.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID

from settlement_kernel.domain.statuses import SaleMode
from settlement_kernel.domain.values import ZERO, to_amount
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models import SaleItem, SaleReturn

logger = get_logger("modules.sales.models")


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be a positive integer", field="quantity")


def parse_mode(value: SaleMode | str) -> SaleMode:
    try:
        return SaleMode(value)
    except ValueError:
        raise ValidationError(f"Unknown sale mode {value!r}", field="mode") from None


@dataclass(frozen=True)
class SaleLineRequest:
    """
    Stock to sell from one container item.

    ``sale_price_usd`` defaults to the item's sale price when omitted.
    """

    container_item_id: UUID
    quantity: int
    sale_price_usd: Decimal | None = None

    def __post_init__(self) -> None:
        _check_quantity(self.quantity)
        if self.sale_price_usd is not None:
            price = to_amount(self.sale_price_usd, "sale_price_usd")
            if price <= ZERO:
                raise ValidationError("Sale price must be positive", field="sale_price_usd")
            object.__setattr__(self, "sale_price_usd", price)


@dataclass(frozen=True)
class ReturnLineRequest:
    sale_item_id: UUID
    quantity: int

    def __post_init__(self) -> None:
        _check_quantity(self.quantity)


def merge_sale_lines(lines: Iterable[SaleLineRequest]) -> list[SaleLineRequest]:
    """One line per stock row; quantities add up, the first explicit price wins."""
    merged: dict[UUID, SaleLineRequest] = {}
    for line in lines:
        existing = merged.get(line.container_item_id)
        if existing is None:
            merged[line.container_item_id] = line
        else:
            merged[line.container_item_id] = replace(
                existing,
                quantity=existing.quantity + line.quantity,
                sale_price_usd=existing.sale_price_usd or line.sale_price_usd,
            )
    return list(merged.values())


def merge_return_lines(lines: Iterable[ReturnLineRequest]) -> list[ReturnLineRequest]:
    merged: dict[UUID, int] = {}
    for line in lines:
        merged[line.sale_item_id] = merged.get(line.sale_item_id, 0) + line.quantity
    return [ReturnLineRequest(sale_item_id=key, quantity=qty) for key, qty in merged.items()]


@dataclass(frozen=True)
class ExchangeResult:
    """What an exchange produced: the optional return leg and the new lines."""

    sale_id: UUID
    sale_return: SaleReturn | None
    added_items: tuple[SaleItem, ...]
    return_total_usd: Decimal
    add_total_usd: Decimal
