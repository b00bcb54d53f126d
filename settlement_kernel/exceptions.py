"""
Module: settlement_kernel.exceptions
Responsibility: Typed exception hierarchy for the settlement engine.  Every
    domain failure raised by the kernel, engines, modules and services is an
    instance of ``SettlementError`` carrying a machine-readable ``code``.
Architecture position: Kernel > Exceptions.  Zero dependencies on other
    settlement packages; imported by every layer.

Invariants enforced:
    - Every exception class carries a stable ``code`` class attribute that
      callers may switch on.  Codes never change once published.
    - Structured attributes (ids, amounts, blockers) are stored on the
      instance so that the JSON log formatter can emit them as
      ``exc_<attr>`` fields.
    - Errors are raised, never returned.  A raised error aborts the
      enclosing unit of work and leaves all rows in their pre-call state.

Failure modes:
    N/A -- this module only defines exception types.

Audit relevance:
    Gate rejections (``PeriodLockedError``), blocked period closes
    (``PeriodCloseBlockedError``) and over-payout attempts
    (``OverpayError``) are logged at WARNING by the raising service.

Exception hierarchy::

    SettlementError
    +-- ValidationError                 VALIDATION_ERROR
    +-- AuthorizationError              AUTHORIZATION_DENIED
    +-- NotFoundError                   NOT_FOUND
    +-- PeriodError
    |   +-- PeriodLockedError           PERIOD_LOCKED
    |   +-- PeriodCloseBlockedError     PERIOD_CLOSE_BLOCKED
    +-- StateConflictError              STATE_CONFLICT
    |   +-- ContainerClosedError        CONTAINER_CLOSED
    |   +-- ContainerInTransitError     CONTAINER_IN_TRANSIT
    |   +-- ContainerNotArrivedError    CONTAINER_NOT_ARRIVED
    |   +-- InvalidStatusTransitionError INVALID_STATUS_TRANSITION
    |   +-- NoDebtError                 NO_DEBT
    |   +-- SaleFullyReturnedError      SALE_FULLY_RETURNED
    |   +-- OverReturnError             OVER_RETURN
    |   +-- InventoryCodeError          INVENTORY_CODE_REJECTED
    |   +-- StockInUseError             STOCK_IN_USE
    +-- InsufficientStockError          INSUFFICIENT_STOCK
    +-- OverpayError                    OVERPAY
    |   +-- CreditLimitExceededError    CREDIT_LIMIT_EXCEEDED
    +-- ImmutabilityViolationError      IMMUTABILITY_VIOLATION
"""

from decimal import Decimal
from typing import Sequence
from uuid import UUID


class SettlementError(Exception):
    """Base exception for all settlement engine errors."""

    code: str = "SETTLEMENT_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Input / access
# =============================================================================


class ValidationError(SettlementError):
    """Malformed or missing input.  Raised before any write."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class AuthorizationError(SettlementError):
    """Actor role is not in the role set required for the operation."""

    code: str = "AUTHORIZATION_DENIED"

    def __init__(self, operation: str, role: str):
        self.operation = operation
        self.role = role
        super().__init__(f"Role {role} is not allowed to perform {operation}")


class NotFoundError(SettlementError):
    """A referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} {entity_id} not found")


# =============================================================================
# Period gate
# =============================================================================


class PeriodError(SettlementError):
    """Base for financial period errors."""

    code: str = "PERIOD_ERROR"


class PeriodLockedError(PeriodError):
    """Money-affecting mutation targeted a LOCKED financial period."""

    code: str = "PERIOD_LOCKED"

    def __init__(self, year: int, month: int):
        self.year = year
        self.month = month
        super().__init__(f"Financial period {month}.{year} is locked")


class PeriodCloseBlockedError(PeriodError):
    """Period lock rejected because one or more checklist items failed."""

    code: str = "PERIOD_CLOSE_BLOCKED"

    def __init__(self, year: int, month: int, blockers: Sequence[str]):
        self.year = year
        self.month = month
        self.blockers = list(blockers)
        super().__init__(
            f"Financial period {month}.{year} cannot be locked: "
            + "; ".join(self.blockers)
        )


# =============================================================================
# State preconditions
# =============================================================================


class StateConflictError(SettlementError):
    """An aggregate is not in a status that permits the operation."""

    code: str = "STATE_CONFLICT"


class ContainerClosedError(StateConflictError):
    """Container is CLOSED; items, expenses and investments are frozen."""

    code: str = "CONTAINER_CLOSED"

    def __init__(self, container_id: UUID):
        self.container_id = str(container_id)
        super().__init__(f"Container {container_id} is closed")


class ContainerInTransitError(StateConflictError):
    """Operation requires the container to have arrived."""

    code: str = "CONTAINER_IN_TRANSIT"

    def __init__(self, container_id: UUID, operation: str):
        self.container_id = str(container_id)
        self.operation = operation
        super().__init__(
            f"Container {container_id} is in transit; {operation} is not allowed"
        )


class ContainerNotArrivedError(StateConflictError):
    """Stock can only be sold from an ARRIVED container."""

    code: str = "CONTAINER_NOT_ARRIVED"

    def __init__(self, container_id: UUID, status: str):
        self.container_id = str(container_id)
        self.status = status
        super().__init__(
            f"Container {container_id} is {status}; only ARRIVED stock can be sold"
        )


class InvalidStatusTransitionError(StateConflictError):
    """Container status may only move forward."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move container from {current} to {requested}")


class NoDebtError(StateConflictError):
    """Payment attempted on a sale without outstanding debt."""

    code: str = "NO_DEBT"

    def __init__(self, sale_id: UUID):
        self.sale_id = str(sale_id)
        super().__init__(f"Sale {sale_id} has no outstanding debt")


class SaleFullyReturnedError(StateConflictError):
    """Return attempted on a sale that is already fully returned."""

    code: str = "SALE_FULLY_RETURNED"

    def __init__(self, sale_id: UUID):
        self.sale_id = str(sale_id)
        super().__init__(f"Sale {sale_id} is already fully returned")


class OverReturnError(StateConflictError):
    """Returned quantity exceeds what is still held by the client."""

    code: str = "OVER_RETURN"

    def __init__(self, sale_item_id: UUID, requested: int, returnable: int):
        self.sale_item_id = str(sale_item_id)
        self.requested = requested
        self.returnable = returnable
        super().__init__(
            f"Cannot return {requested} of sale line {sale_item_id}; "
            f"only {returnable} returnable"
        )


class InventoryCodeError(StateConflictError):
    """Confirmation code rejected (unknown, expired, discrepancy, exhausted)."""

    code: str = "INVENTORY_CODE_REJECTED"

    def __init__(self, message: str, inventory_code: str | None = None):
        self.inventory_code = inventory_code
        super().__init__(message)


class StockInUseError(StateConflictError):
    """Stock row is referenced by sales or inventory and cannot be removed."""

    code: str = "STOCK_IN_USE"

    def __init__(self, container_item_id: UUID):
        self.container_item_id = str(container_item_id)
        super().__init__(
            f"Stock item {container_item_id} is referenced by sales or inventory"
        )


# =============================================================================
# Stock and money limits
# =============================================================================


class InsufficientStockError(SettlementError):
    """Requested quantity exceeds live stock."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, container_item_id: UUID, requested: int, available: int):
        self.container_item_id = str(container_item_id)
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for item {container_item_id}: "
            f"requested {requested}, available {available}"
        )


class OverpayError(SettlementError):
    """Requested amount exceeds the available balance."""

    code: str = "OVERPAY"

    def __init__(self, requested: Decimal, available: Decimal, message: str | None = None):
        self.requested = requested
        self.available = available
        super().__init__(
            message
            or f"Requested {requested} exceeds available balance {available}"
        )


class CreditLimitExceededError(OverpayError):
    """Unpaid part of a sale exceeds the client's credit limit."""

    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(self, client_id: UUID, unpaid: Decimal, credit_limit: Decimal):
        self.client_id = str(client_id)
        super().__init__(
            unpaid,
            credit_limit,
            message=(
                f"Client {client_id} credit limit {credit_limit} exceeded "
                f"by unpaid amount {unpaid}"
            ),
        )


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityViolationError(SettlementError):
    """Attempted to modify or delete an append-only or frozen row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
