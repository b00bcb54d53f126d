"""
Investment Domain Models.

Request and read types of the investments module.  ``InvestorPosition``
is one investor's standing in one container as shown in the investor
summary.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from settlement_kernel.domain.values import ZERO, to_amount
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("modules.investments.models")


@dataclass(frozen=True)
class InvestmentLine:
    """Capital an investor puts into a container."""

    investor_id: UUID
    amount_usd: Decimal

    def __post_init__(self) -> None:
        amount = to_amount(self.amount_usd, "amount_usd")
        if amount <= ZERO:
            raise ValidationError("Investment amount must be positive", field="amount_usd")
        object.__setattr__(self, "amount_usd", amount)


@dataclass(frozen=True)
class InvestorPosition:
    """
    One investor in one container.

    ``available_usd`` is what the payout check allows (cost basis share
    minus payouts); ``profit_share_usd`` is the investor's share of the
    realized net profit, reported alongside it.
    """

    container_id: UUID
    container_name: str
    container_status: str
    invested_usd: Decimal
    percentage_share: Decimal
    share_amount_usd: Decimal
    profit_share_usd: Decimal
    paid_usd: Decimal
    available_usd: Decimal


@dataclass(frozen=True)
class InvestorSummary:
    investor_id: UUID
    positions: tuple[InvestorPosition, ...]

    @property
    def invested_usd(self) -> Decimal:
        return sum((p.invested_usd for p in self.positions), ZERO)

    @property
    def paid_usd(self) -> Decimal:
        return sum((p.paid_usd for p in self.positions), ZERO)

    @property
    def available_usd(self) -> Decimal:
        return sum((p.available_usd for p in self.positions), ZERO)
