"""
Inventory Domain Models.

What a warehouse count hands in: the counted quantity per stock row.
System quantities are read from the stock rows when the count is
submitted and frozen on the session lines.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("modules.inventory.models")

DISCREPANCY_PREFIX = "DISC"
COUNT_PREFIX = "CNT"


@dataclass(frozen=True)
class CountRequest:
    container_item_id: UUID
    actual_quantity: int

    def __post_init__(self) -> None:
        if (
            isinstance(self.actual_quantity, bool)
            or not isinstance(self.actual_quantity, int)
            or self.actual_quantity < 0
        ):
            raise ValidationError(
                "Counted quantity must be a non-negative integer",
                field="actual_quantity",
            )
