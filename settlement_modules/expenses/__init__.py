"""
Expenses Module (``settlement_modules.expenses``).

Responsibility
--------------
Container expenses (logistics, customs, storage, transport, other) and
signed corrections to them.  Corrections are confirmed separately; an
unconfirmed correction blocks the month close.

Architecture position
---------------------
**Modules layer** -- ``ExpenseService`` plus the request type used when a
container is created with an initial expense.
"""

from settlement_modules.expenses.models import (
    INITIAL_EXPENSE_TITLE,
    ExpenseDraft,
    parse_category,
)
from settlement_modules.expenses.service import ExpenseService

__all__ = [
    "ExpenseDraft",
    "ExpenseService",
    "INITIAL_EXPENSE_TITLE",
    "parse_category",
]
