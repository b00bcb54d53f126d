"""
Container Domain Models.

Request lines for manual stock and the read model of a container's
settlement.  Container purchase lines reuse ``ItemLine`` from
``settlement_engines.cost_allocation``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from settlement_engines.cost_allocation import ItemLine
from settlement_kernel.domain.values import ZERO
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("modules.containers.models")


@dataclass(frozen=True)
class ManualStockLine(ItemLine):
    """
    Stock received outside any shipment.

    Unlike a container line, a manual line must carry a purchase value:
    either a positive line total or a positive unit price.
    """

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.purchase_usd <= ZERO:
            raise ValidationError(
                "Manual stock needs a unit price or a line total",
                field="unit_price_usd",
            )


@dataclass(frozen=True)
class ShareRow:
    investor_id: UUID
    invested_usd: Decimal
    percentage_share: Decimal


@dataclass(frozen=True)
class SettlementSummary:
    """
    Capital versus cost basis of one container.

    ``matches_expected`` is true when invested capital equals purchase
    plus expenses within the share tolerance.
    """

    container_id: UUID
    total_purchase_usd: Decimal
    total_expenses_usd: Decimal
    net_profit_usd: Decimal
    invested_total_usd: Decimal
    matches_expected: bool
    shares: tuple[ShareRow, ...]

    @property
    def expected_capital_usd(self) -> Decimal:
        return self.total_purchase_usd + self.total_expenses_usd
