"""
SystemControl -- explicit operating parameters for the settlement engine.

Replaces a process-wide mutable "system control" row.  The static knobs
live here and are injected into the services that need them; the live
counters that used to be cached beside them (open discrepancy count,
last confirmed inventory) are recomputed from rows on every read.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class SystemControl:
    """
    Operating parameters, normally loaded by ``settlement_config``.

    Guarantees:
        Values are validated on construction; an invalid combination
        raises ``ValueError``.
    """

    # Tolerance when comparing a requested payout with the available balance.
    payout_epsilon: Decimal = Decimal("0.0001")
    # Allowed deviation of the share sum from 100 and of capital vs cost basis.
    share_tolerance: Decimal = Decimal("0.01")
    inventory_code_digits: int = 3
    inventory_code_ttl_minutes: int = 10
    inventory_code_attempts: int = 50
    planned_monthly_expenses_usd: Decimal = Decimal("0")
    sold_out_percent: Decimal = Decimal("99")
    nearly_sold_percent: Decimal = Decimal("90")
    payout_progress_alert: Decimal = Decimal("0.9")
    manual_stock_container_name: str = "Stock outside containers"

    def __post_init__(self) -> None:
        if self.payout_epsilon < 0:
            raise ValueError("payout_epsilon must be non-negative")
        if self.share_tolerance < 0:
            raise ValueError("share_tolerance must be non-negative")
        if not 1 <= self.inventory_code_digits <= 9:
            raise ValueError("inventory_code_digits must be between 1 and 9")
        if self.inventory_code_ttl_minutes <= 0:
            raise ValueError("inventory_code_ttl_minutes must be positive")
        if self.inventory_code_attempts <= 0:
            raise ValueError("inventory_code_attempts must be positive")
        if self.planned_monthly_expenses_usd < 0:
            raise ValueError("planned_monthly_expenses_usd must be non-negative")

    @property
    def inventory_code_range(self) -> tuple[int, int]:
        """Inclusive numeric range of codes with exactly ``inventory_code_digits`` digits."""
        low = 10 ** (self.inventory_code_digits - 1)
        if self.inventory_code_digits == 1:
            low = 0
        return low, 10 ** self.inventory_code_digits - 1
