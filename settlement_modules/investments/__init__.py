"""
Investments Module (``settlement_modules.investments``).

Responsibility
--------------
Investor capital per container, percentage shares, the payable balance
and payouts.

Invariants enforced
-------------------
* Shares of a container with capital sum to 100 within tolerance.
* payable = (purchase + expenses) x share / 100 - payouts, never negative.
* No payout above the payable balance plus the configured epsilon.
"""

from settlement_modules.investments.models import (
    InvestmentLine,
    InvestorPosition,
    InvestorSummary,
)
from settlement_modules.investments.service import InvestmentService

__all__ = [
    "InvestmentLine",
    "InvestmentService",
    "InvestorPosition",
    "InvestorSummary",
]
