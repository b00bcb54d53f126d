"""
Expense request types.

The ORM rows live in ``settlement_kernel.models.expense``; these frozen
types describe what a caller hands in.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from settlement_kernel.domain.statuses import ExpenseCategory
from settlement_kernel.domain.values import ZERO, to_amount
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("modules.expenses.models")

INITIAL_EXPENSE_TITLE = "Initial expense"


def parse_category(value: ExpenseCategory | str) -> ExpenseCategory:
    try:
        return ExpenseCategory(value)
    except ValueError:
        raise ValidationError(f"Unknown expense category {value!r}", field="category") from None


@dataclass(frozen=True)
class ExpenseDraft:
    """An expense to book together with another operation (container creation)."""

    amount_usd: Decimal
    category: ExpenseCategory = ExpenseCategory.OTHER
    title: str = INITIAL_EXPENSE_TITLE
    description: str | None = None

    def __post_init__(self) -> None:
        amount = to_amount(self.amount_usd, "amount_usd")
        if amount <= ZERO:
            raise ValidationError("Expense amount must be positive", field="amount_usd")
        object.__setattr__(self, "amount_usd", amount)
        object.__setattr__(self, "category", parse_category(self.category))
        if not (self.title or "").strip():
            raise ValidationError("Expense title is required", field="title")
