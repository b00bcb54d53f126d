"""
Module: settlement_engines
Responsibility:
    Re-exports the pure calculation engines used by the services and
    modules layers.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import settlement_kernel.domain, exceptions and logging.
    MUST NOT import settlement_services or settlement_modules.

Invariants enforced:
    - Engines never read the clock; times are passed in.
    - Decimal-only arithmetic for amounts, shares and unit costs.
"""

from settlement_engines.close_checklist import (
    ChecklistItem,
    CloseFacts,
    blockers,
    evaluate_checklist,
)
from settlement_engines.cost_allocation import (
    ItemLine,
    PurchaseTotals,
    compute_purchase_totals,
    compute_unit_cost,
    grow_purchase_totals,
    merge_item_lines,
    resolve_item_purchase,
)
from settlement_engines.financials import (
    ContainerFinancials,
    ExpenseLine,
    SoldLine,
    compute_financials,
    display_status,
    sold_percent,
    total_expenses,
)
from settlement_engines.reconciliation import (
    CountClassification,
    CountLine,
    classify_count,
    is_code_expired,
    normalize_code,
)
from settlement_engines.sales import (
    PaymentSettlement,
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
from settlement_engines.settlement import (
    PayableBalance,
    check_payout,
    compute_payable,
    compute_shares,
    matches_expected,
    payout_progress,
    realized_profit_share,
    shares_sum_ok,
)

__all__ = [
    "ChecklistItem",
    "CloseFacts",
    "ContainerFinancials",
    "CountClassification",
    "CountLine",
    "ExpenseLine",
    "ItemLine",
    "PayableBalance",
    "PaymentSettlement",
    "PurchaseTotals",
    "SaleBalance",
    "SoldLine",
    "apply_exchange",
    "apply_return",
    "blockers",
    "check_payout",
    "classify_count",
    "compute_financials",
    "compute_payable",
    "compute_purchase_totals",
    "compute_shares",
    "compute_status",
    "compute_unit_cost",
    "display_status",
    "evaluate_checklist",
    "exceeds_credit_limit",
    "grow_purchase_totals",
    "is_code_expired",
    "is_fully_returned",
    "matches_expected",
    "merge_item_lines",
    "normalize_code",
    "opening_balance",
    "payout_progress",
    "realized_profit_share",
    "resolve_item_purchase",
    "returnable_quantity",
    "settle_payment",
    "shares_sum_ok",
    "sold_percent",
    "total_expenses",
]
