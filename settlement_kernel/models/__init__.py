"""ORM models for the settlement kernel."""

from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.models.catalog import Client, Investor, Product
from settlement_kernel.models.container import (
    Container,
    ContainerItem,
    ContainerStatus,
    ManualStockEntry,
)
from settlement_kernel.models.expense import (
    ContainerExpense,
    ExpenseCategory,
    ExpenseCorrection,
)
from settlement_kernel.models.financial_period import FinancialPeriod, PeriodStatus
from settlement_kernel.models.inventory import (
    InventorySession,
    InventorySessionItem,
    InventorySessionStatus,
)
from settlement_kernel.models.investment import ContainerInvestment, InvestorPayout
from settlement_kernel.models.sale import (
    Payment,
    ReturnItem,
    Sale,
    SaleItem,
    SaleMode,
    SaleReturn,
    SaleStatus,
)
from settlement_kernel.models.sequence import SequenceCounter


def import_all_models() -> None:
    """Importing this package registers every table on ``Base.metadata``."""


__all__ = [
    "AuditAction",
    "AuditEvent",
    "Client",
    "Container",
    "ContainerExpense",
    "ContainerInvestment",
    "ContainerItem",
    "ContainerStatus",
    "ExpenseCategory",
    "ExpenseCorrection",
    "FinancialPeriod",
    "InventorySession",
    "InventorySessionItem",
    "InventorySessionStatus",
    "Investor",
    "InvestorPayout",
    "ManualStockEntry",
    "Payment",
    "PeriodStatus",
    "Product",
    "ReturnItem",
    "Sale",
    "SaleItem",
    "SaleMode",
    "SaleReturn",
    "SaleStatus",
    "SequenceCounter",
    "import_all_models",
]
