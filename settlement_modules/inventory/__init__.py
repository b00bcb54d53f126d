"""
Inventory Module (``settlement_modules.inventory``).

Responsibility
--------------
Warehouse counts against system stock, one-time confirmation codes and
the discrepancy workflow (resolve, send to administrator).

Invariants enforced
-------------------
* Counts never change stock.
* Open discrepancies and the last confirmation time are read live from
  the session rows.
"""

from settlement_modules.inventory.models import CountRequest
from settlement_modules.inventory.service import InventoryService

__all__ = [
    "CountRequest",
    "InventoryService",
]
