"""
Sales Module (``settlement_modules.sales``).

Responsibility
--------------
Sales of container stock to clients (IMMEDIATE, DEBT, CONSIGNMENT),
payments against debt, returns and exchanges.

Invariants enforced
-------------------
* total == paid + debt; paid <= total; payments never exceed debt.
* Stock is decremented on sale and restored on return in the same
  transaction as the ledger rows.
* Sale line cost is frozen when the line is written.
"""

from settlement_modules.sales.models import (
    ExchangeResult,
    ReturnLineRequest,
    SaleLineRequest,
    merge_return_lines,
    merge_sale_lines,
    parse_mode,
)
from settlement_modules.sales.service import SalesService

__all__ = [
    "ExchangeResult",
    "ReturnLineRequest",
    "SaleLineRequest",
    "SalesService",
    "merge_return_lines",
    "merge_sale_lines",
    "parse_mode",
]
