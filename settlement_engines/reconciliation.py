"""
Module: settlement_engines.reconciliation
Responsibility:
    Classify a warehouse count against system stock and check inventory
    confirmation codes (format and age).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Code generation itself
    needs uniqueness lookups and lives in the inventory module.

Invariants enforced:
    - Any non-zero difference makes the whole count a DISCREPANCY.
    - The system quantity is the value handed in; it is never re-read.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from settlement_kernel.domain.statuses import InventorySessionStatus
from settlement_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class CountLine:
    container_item_id: UUID
    container_id: UUID
    product_id: UUID
    system_quantity: int
    actual_quantity: int

    @property
    def difference(self) -> int:
        return self.actual_quantity - self.system_quantity


@dataclass(frozen=True)
class CountClassification:
    status: InventorySessionStatus
    lines: tuple[CountLine, ...]

    @property
    def discrepancy_count(self) -> int:
        return sum(1 for line in self.lines if line.difference != 0)

    @property
    def is_discrepancy(self) -> bool:
        return self.status is InventorySessionStatus.DISCREPANCY


def classify_count(lines: Sequence[CountLine]) -> CountClassification:
    if not lines:
        raise ValidationError("A count needs at least one line", field="items")
    seen: set[UUID] = set()
    for line in lines:
        if line.actual_quantity < 0:
            raise ValidationError("Counted quantity must not be negative", field="actual_quantity")
        if line.container_item_id in seen:
            raise ValidationError(
                f"Stock item {line.container_item_id} is counted twice",
                field="items",
            )
        seen.add(line.container_item_id)

    mismatch = any(line.difference != 0 for line in lines)
    status = InventorySessionStatus.DISCREPANCY if mismatch else InventorySessionStatus.PENDING
    return CountClassification(status=status, lines=tuple(lines))


def normalize_code(raw: str | None, digits: int) -> str | None:
    """The code if it is exactly ``digits`` decimal digits, else None."""
    code = (raw or "").strip()
    if len(code) != digits or not code.isdigit():
        return None
    return code


def is_code_expired(issued_at: datetime | None, now: datetime, ttl_minutes: int) -> bool:
    if issued_at is None:
        return True
    return now - issued_at > timedelta(minutes=ttl_minutes)
