"""
Module: settlement_engines.settlement
Responsibility:
    Investor-side arithmetic: percentage shares of a container's capital,
    the payable balance an investor may withdraw, the payout limit check,
    and the realized profit share shown in reports.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Shares of a container with any capital sum to 100 within rounding.
    - payable pool = purchase + expenses (cost basis, not profit).
    - available = max(0, pool x share / 100 - paid).
    - A payout above available + epsilon is rejected.

Failure modes:
    - OverpayError from ``check_payout``.
    - ValidationError for a non-positive payout amount.

Audit relevance:
    The payable pool and the realized profit share intentionally differ;
    both are reported side by side in the investor summary.
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import TypeVar

from settlement_engines.tracer import traced_engine
from settlement_kernel.domain.values import HUNDRED, ZERO, non_negative, quantize_amount
from settlement_kernel.exceptions import OverpayError, ValidationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.settlement")

K = TypeVar("K", bound=Hashable)


@dataclass(frozen=True)
class PayableBalance:
    """What one investor may still withdraw from one container."""

    payable_pool: Decimal
    percentage_share: Decimal
    share_amount: Decimal
    paid: Decimal
    available: Decimal


@traced_engine("shares", "1.0")
def compute_shares(invested: Mapping[K, Decimal]) -> dict[K, Decimal]:
    """
    Percentage share per key: invested / total invested x 100.

    Every share is 0 when nothing has been invested.
    """
    total = sum(invested.values(), ZERO)
    if total <= ZERO:
        return {key: ZERO for key in invested}
    return {key: quantize_amount(amount / total * HUNDRED) for key, amount in invested.items()}


def shares_sum_ok(shares: Mapping[K, Decimal], tolerance: Decimal) -> bool:
    if not shares:
        return True
    total = sum(shares.values(), ZERO)
    return total == ZERO or abs(total - HUNDRED) <= tolerance


def payable_pool(total_purchase_usd: Decimal, total_expenses_usd: Decimal) -> Decimal:
    return total_purchase_usd + total_expenses_usd


@traced_engine(
    "payable",
    "1.0",
    fingerprint_fields=("total_purchase_usd", "total_expenses_usd", "percentage_share", "paid"),
)
def compute_payable(
    total_purchase_usd: Decimal,
    total_expenses_usd: Decimal,
    percentage_share: Decimal,
    paid: Decimal,
) -> PayableBalance:
    pool = payable_pool(total_purchase_usd, total_expenses_usd)
    share_amount = quantize_amount(pool * percentage_share / HUNDRED)
    return PayableBalance(
        payable_pool=pool,
        percentage_share=percentage_share,
        share_amount=share_amount,
        paid=paid,
        available=non_negative(share_amount - paid),
    )


def check_payout(amount: Decimal, balance: PayableBalance, epsilon: Decimal) -> None:
    """Raise unless ``amount`` fits into the available balance (+ epsilon)."""
    if amount <= ZERO:
        raise ValidationError("Payout amount must be positive", field="amount")
    if amount > balance.available + epsilon:
        raise OverpayError(amount, balance.available)


def realized_profit_share(net_profit_usd: Decimal, percentage_share: Decimal) -> Decimal:
    return quantize_amount(net_profit_usd * percentage_share / HUNDRED)


def matches_expected(
    invested_total: Decimal,
    total_purchase_usd: Decimal,
    total_expenses_usd: Decimal,
    tolerance: Decimal,
) -> bool:
    """Whether contributed capital covers the cost basis within ``tolerance``."""
    expected = payable_pool(total_purchase_usd, total_expenses_usd)
    return abs(invested_total - expected) < tolerance


def payout_progress(paid: Decimal, profit_share: Decimal) -> Decimal | None:
    """Fraction of the realized profit share already paid out; None without profit."""
    if profit_share <= ZERO:
        return None
    return paid / profit_share
