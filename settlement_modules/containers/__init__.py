"""
Containers Module (``settlement_modules.containers``).

Responsibility
--------------
Import containers and their stock: creation with purchase lines, capital
and an initial expense; the IN_TRANSIT -> ARRIVED -> CLOSED lifecycle;
stock received outside any container; edits and removal of stock rows;
the settlement summary comparing capital with cost basis.

Architecture position
---------------------
**Modules layer** -- ``ContainerService`` composes the expenses and
investments services for compound creation and hands every derived
column to ``settlement_services.recompute``.

Invariants enforced
-------------------
* One exchange rate per container; CNY totals are re-derived from USD.
* Unit cost is shared by all items of a container and only changes
  through the recompute pipeline.

Audit relevance
---------------
Every creation, line, status change and stock edit writes an audit event.
"""

from settlement_engines.cost_allocation import ItemLine
from settlement_modules.containers.models import (
    ManualStockLine,
    SettlementSummary,
    ShareRow,
)
from settlement_modules.containers.service import ContainerService

__all__ = [
    "ContainerService",
    "ItemLine",
    "ManualStockLine",
    "SettlementSummary",
    "ShareRow",
]
