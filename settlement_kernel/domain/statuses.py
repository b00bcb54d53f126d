"""
Lifecycle states shared by models, engines and services.

Columns store the ``.value`` strings; the enums are ``str`` subclasses so
a loaded column compares equal to its member.
"""

from enum import Enum


class PeriodStatus(str, Enum):
    OPEN = "OPEN"
    LOCKED = "LOCKED"


class ContainerStatus(str, Enum):
    """Monotonic: IN_TRANSIT -> ARRIVED -> CLOSED."""

    IN_TRANSIT = "IN_TRANSIT"
    ARRIVED = "ARRIVED"
    CLOSED = "CLOSED"

    @property
    def rank(self) -> int:
        return _CONTAINER_ORDER.index(self)


_CONTAINER_ORDER = [
    ContainerStatus.IN_TRANSIT,
    ContainerStatus.ARRIVED,
    ContainerStatus.CLOSED,
]


class SaleMode(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    DEBT = "DEBT"
    CONSIGNMENT = "CONSIGNMENT"

    @property
    def requires_due_date(self) -> bool:
        return self is not SaleMode.IMMEDIATE


class SaleStatus(str, Enum):
    DEBT = "DEBT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    COMPLETED = "COMPLETED"
    RETURNED = "RETURNED"


class InventorySessionStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DISCREPANCY = "DISCREPANCY"


class ExpenseCategory(str, Enum):
    LOGISTICS = "LOGISTICS"
    CUSTOMS = "CUSTOMS"
    STORAGE = "STORAGE"
    TRANSPORT = "TRANSPORT"
    OTHER = "OTHER"
