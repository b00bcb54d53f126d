"""Selectors for the settlement kernel (read side)."""

from settlement_kernel.selectors.expense_selector import ExpenseDTO, ExpenseSelector
from settlement_kernel.selectors.inventory_selector import InventorySelector
from settlement_kernel.selectors.sales_selector import (
    OpenDebtDTO,
    SalesSelector,
    SoldLineDTO,
)
from settlement_kernel.selectors.settlement_selector import PositionDTO, SettlementSelector

__all__ = [
    "ExpenseDTO",
    "ExpenseSelector",
    "InventorySelector",
    "OpenDebtDTO",
    "PositionDTO",
    "SalesSelector",
    "SettlementSelector",
    "SoldLineDTO",
]
