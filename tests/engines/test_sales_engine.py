"""
Tests for sales ledger arithmetic.

Covers:
- Status function ordering
- Opening balance, payment capping
- Return and exchange balances (total == paid + debt)
- Fully-returned, returnable quantity and credit limit tests
"""

from decimal import Decimal

import pytest

from settlement_engines.sales import (
    SaleBalance,
    apply_exchange,
    apply_return,
    compute_status,
    exceeds_credit_limit,
    is_fully_returned,
    opening_balance,
    returnable_quantity,
    settle_payment,
)
from settlement_kernel.domain.statuses import SaleStatus
from settlement_kernel.exceptions import ValidationError


def _balanced(balance: SaleBalance) -> bool:
    return balance.total == balance.paid + balance.debt


class TestComputeStatus:
    def test_returned_wins(self):
        assert compute_status(Decimal("100"), Decimal("0"), Decimal("100"), True) is SaleStatus.RETURNED

    def test_no_debt_is_completed(self):
        assert compute_status(Decimal("100"), Decimal("100"), Decimal("0")) is SaleStatus.COMPLETED

    def test_some_paid_is_partially_paid(self):
        status = compute_status(Decimal("100"), Decimal("40"), Decimal("60"))
        assert status is SaleStatus.PARTIALLY_PAID

    def test_nothing_paid_is_debt(self):
        assert compute_status(Decimal("100"), Decimal("0"), Decimal("100")) is SaleStatus.DEBT

    def test_zero_total_is_completed(self):
        assert compute_status(Decimal("0"), Decimal("0"), Decimal("0")) is SaleStatus.COMPLETED


class TestOpeningBalance:
    def test_paid_capped_at_total(self):
        balance = opening_balance(Decimal("100"), Decimal("150"))
        assert balance.paid == Decimal("100")
        assert balance.debt == Decimal("0")

    def test_partial_payment(self):
        balance = opening_balance(Decimal("100"), Decimal("30"))
        assert balance.debt == Decimal("70")
        assert balance.status() is SaleStatus.PARTIALLY_PAID


class TestSettlePayment:
    def test_applied_is_capped_at_debt(self):
        result = settle_payment(SaleBalance(Decimal("100"), Decimal("40"), Decimal("60")), Decimal("80"))

        assert result.applied == Decimal("60")
        assert result.balance.debt == Decimal("0")
        assert result.balance.paid == Decimal("100")
        assert _balanced(result.balance)

    def test_partial_payment(self):
        result = settle_payment(SaleBalance(Decimal("100"), Decimal("0"), Decimal("100")), Decimal("25"))
        assert result.applied == Decimal("25")
        assert result.balance.status() is SaleStatus.PARTIALLY_PAID

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_rejects_non_positive(self, amount):
        with pytest.raises(ValidationError):
            settle_payment(SaleBalance(Decimal("100"), Decimal("0"), Decimal("100")), amount)


class TestApplyReturn:
    """Debt is reduced first, then paid is capped at the new total."""

    def test_return_within_debt(self):
        balance = apply_return(SaleBalance(Decimal("100"), Decimal("40"), Decimal("60")), Decimal("20"))

        assert balance.total == Decimal("80")
        assert balance.paid == Decimal("40")
        assert balance.debt == Decimal("40")

    def test_return_beyond_debt_caps_paid(self):
        balance = apply_return(SaleBalance(Decimal("100"), Decimal("70"), Decimal("30")), Decimal("50"))

        assert balance.total == Decimal("50")
        assert balance.paid == Decimal("50")
        assert balance.debt == Decimal("0")
        assert _balanced(balance)

    def test_return_then_matching_exchange_restores_total(self):
        original = SaleBalance(Decimal("100"), Decimal("40"), Decimal("60"))
        after_return = apply_return(original, Decimal("20"))

        restored = apply_exchange(after_return, return_total=Decimal("0"), add_total=Decimal("20"))

        assert restored.total == original.total
        assert restored.paid + restored.debt == restored.total

    def test_full_return_of_paid_sale(self):
        balance = apply_return(SaleBalance(Decimal("100"), Decimal("100"), Decimal("0")), Decimal("100"))
        assert balance.total == Decimal("0")
        assert balance.paid == Decimal("0")
        assert balance.debt == Decimal("0")


class TestApplyExchange:
    def test_total_grows_with_added_goods(self):
        balance = apply_exchange(
            SaleBalance(Decimal("100"), Decimal("100"), Decimal("0")),
            return_total=Decimal("20"),
            add_total=Decimal("50"),
        )
        assert balance.total == Decimal("130")
        assert balance.paid == Decimal("100")
        assert balance.debt == Decimal("30")

    def test_paid_capped_when_total_shrinks(self):
        balance = apply_exchange(
            SaleBalance(Decimal("100"), Decimal("100"), Decimal("0")),
            return_total=Decimal("60"),
            add_total=Decimal("10"),
        )
        assert balance.total == Decimal("50")
        assert balance.paid == Decimal("50")
        assert balance.debt == Decimal("0")


class TestReturnHelpers:
    def test_fully_returned(self):
        assert is_fully_returned(Decimal("100"), Decimal("100"))
        assert not is_fully_returned(Decimal("99"), Decimal("100"))

    def test_zero_gross_is_never_fully_returned(self):
        assert not is_fully_returned(Decimal("0"), Decimal("0"))

    def test_returnable_quantity(self):
        assert returnable_quantity(10, 3) == 7
        assert returnable_quantity(10, 12) == 0


class TestCreditLimit:
    def test_zero_limit_is_unlimited(self):
        assert not exceeds_credit_limit(Decimal("1000000"), Decimal("0"), Decimal("0"))

    def test_unpaid_above_limit(self):
        assert exceeds_credit_limit(Decimal("500"), Decimal("100"), Decimal("300"))

    def test_unpaid_at_limit_is_allowed(self):
        assert not exceeds_credit_limit(Decimal("500"), Decimal("200"), Decimal("300"))
