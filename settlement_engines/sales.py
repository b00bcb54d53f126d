"""
Module: settlement_engines.sales
Responsibility:
    Balance arithmetic of the sales ledger: the status function, opening
    balance of a new sale, payment capping, return and exchange math,
    the fully-returned test and the credit limit test.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``SalesService`` feeds
    row values in and writes the returned balances back.

Invariants enforced:
    - total == paid + debt for every balance this module returns.
    - A payment never exceeds the outstanding debt.
    - paid never exceeds total.

Failure modes:
    - ValidationError for non-positive payment amounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from settlement_engines.tracer import traced_engine
from settlement_kernel.domain.statuses import SaleStatus
from settlement_kernel.domain.values import ZERO, non_negative, quantize_amount
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.sales")


def compute_status(
    total: Decimal,
    paid: Decimal,
    debt: Decimal,
    returned_fully: bool = False,
) -> SaleStatus:
    """First match wins: RETURNED, COMPLETED (no debt), PARTIALLY_PAID, DEBT."""
    if returned_fully:
        return SaleStatus.RETURNED
    if debt <= ZERO:
        return SaleStatus.COMPLETED
    if paid > ZERO:
        return SaleStatus.PARTIALLY_PAID
    return SaleStatus.DEBT


@dataclass(frozen=True)
class SaleBalance:
    total: Decimal
    paid: Decimal
    debt: Decimal

    def status(self, returned_fully: bool = False) -> SaleStatus:
        return compute_status(self.total, self.paid, self.debt, returned_fully)

    @classmethod
    def from_paid(cls, total: Decimal, paid: Decimal) -> SaleBalance:
        total = quantize_amount(non_negative(total))
        paid = quantize_amount(min(non_negative(paid), total))
        return cls(total=total, paid=paid, debt=total - paid)


@dataclass(frozen=True)
class PaymentSettlement:
    applied: Decimal
    balance: SaleBalance


def opening_balance(total: Decimal, paid_now: Decimal) -> SaleBalance:
    """Balance of a new sale: paid is ``paid_now`` capped at the total."""
    return SaleBalance.from_paid(total, paid_now)


@traced_engine("payment", "1.0")
def settle_payment(balance: SaleBalance, requested: Decimal) -> PaymentSettlement:
    """Apply ``min(debt, requested)``; the caller rejects sales without debt."""
    if requested <= ZERO:
        raise ValidationError("Payment amount must be positive", field="amount")
    applied = quantize_amount(min(balance.debt, requested))
    return PaymentSettlement(
        applied=applied,
        balance=SaleBalance(
            total=balance.total,
            paid=balance.paid + applied,
            debt=balance.debt - applied,
        ),
    )


@traced_engine("sale_return", "1.0")
def apply_return(balance: SaleBalance, return_total: Decimal) -> SaleBalance:
    """
    Balance after a plain return.

    The total shrinks by the returned amount, debt is reduced first and
    paid is then capped at the new total.
    """
    new_total = quantize_amount(non_negative(balance.total - return_total))
    new_debt = quantize_amount(balance.debt - min(balance.debt, return_total))
    new_paid = min(balance.paid, new_total)
    # Keep total == paid + debt exact when the return exceeds the debt
    if new_paid + new_debt != new_total:
        new_debt = new_total - new_paid
    return SaleBalance(total=new_total, paid=new_paid, debt=new_debt)


@traced_engine("sale_exchange", "1.0")
def apply_exchange(
    balance: SaleBalance,
    return_total: Decimal,
    add_total: Decimal,
) -> SaleBalance:
    """total = old - returned + added; paid capped at total; debt is the rest."""
    new_total = non_negative(balance.total - return_total + add_total)
    return SaleBalance.from_paid(new_total, balance.paid)


def is_fully_returned(returned_total: Decimal, gross_total: Decimal) -> bool:
    """All returns of a sale cover the gross value of every line ever sold on it."""
    return gross_total > ZERO and returned_total >= gross_total


def returnable_quantity(sold: int, already_returned: int) -> int:
    return max(0, sold - already_returned)


def exceeds_credit_limit(total: Decimal, paid_now: Decimal, credit_limit: Decimal) -> bool:
    """A limit of 0 means unlimited."""
    if credit_limit <= ZERO:
        return False
    return total - non_negative(paid_now) > credit_limit
