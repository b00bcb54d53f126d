"""
Access -- role-set authorization at the operation boundary.

Responsibility:
    The caller resolves identity and hands the engine an ``Actor``
    (user id plus role).  This module only answers "is this role in the
    set allowed for this operation"; it never authenticates.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``settlement_config`` may build a
    ``RolePolicy`` from YAML; services fall back to ``RolePolicy.default()``.

Failure modes:
    - AuthorizationError when the actor's role is outside the operation's set.
    - KeyError for an operation name with no configured role set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping
from uuid import UUID

from settlement_kernel.exceptions import AuthorizationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("domain.access")


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    ACCOUNTANT = "ACCOUNTANT"
    INVESTOR = "INVESTOR"
    WAREHOUSE = "WAREHOUSE"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the session collaborator."""

    user_id: UUID
    role: Role


class Operation:
    """Names of the role-gated operations."""

    CONTAINERS_MANAGE = "containers.manage"
    STOCK_MANAGE = "stock.manage"
    EXPENSES_ADD = "expenses.add"
    EXPENSES_CORRECT = "expenses.correct"
    INVESTORS_MANAGE = "investors.manage"
    SALES_MANAGE = "sales.manage"
    SALES_DELETE = "sales.delete"
    PERIODS_LOCK = "periods.lock"
    PERIODS_UNLOCK = "periods.unlock"
    WAREHOUSE_COUNT = "inventory.count"
    INVENTORY_CONFIRM = "inventory.confirm"
    INVENTORY_RESOLVE = "inventory.resolve"
    INVENTORY_DELETE = "inventory.delete"
    INVENTORY_DELETE_CONFIRMED = "inventory.delete_confirmed"


_SA = Role.SUPER_ADMIN
_AD = Role.ADMIN

DEFAULT_ROLE_SETS: dict[str, frozenset[Role]] = {
    Operation.CONTAINERS_MANAGE: frozenset({_SA, _AD}),
    Operation.STOCK_MANAGE: frozenset({_SA}),
    Operation.EXPENSES_ADD: frozenset({_SA, _AD, Role.ACCOUNTANT}),
    Operation.EXPENSES_CORRECT: frozenset({_SA, _AD}),
    Operation.INVESTORS_MANAGE: frozenset({_SA, _AD}),
    Operation.SALES_MANAGE: frozenset({_SA, _AD, Role.MANAGER}),
    Operation.SALES_DELETE: frozenset({_SA}),
    Operation.PERIODS_LOCK: frozenset({_SA, _AD}),
    Operation.PERIODS_UNLOCK: frozenset({_SA}),
    Operation.WAREHOUSE_COUNT: frozenset({_SA, _AD, Role.WAREHOUSE}),
    Operation.INVENTORY_CONFIRM: frozenset({_SA, _AD, Role.ACCOUNTANT}),
    Operation.INVENTORY_RESOLVE: frozenset({_SA, _AD}),
    Operation.INVENTORY_DELETE: frozenset({_SA, _AD}),
    Operation.INVENTORY_DELETE_CONFIRMED: frozenset({_SA}),
}


@dataclass(frozen=True)
class RolePolicy:
    """Operation name -> roles allowed to perform it."""

    role_sets: Mapping[str, frozenset[Role]] = field(
        default_factory=lambda: dict(DEFAULT_ROLE_SETS)
    )

    @classmethod
    def default(cls) -> RolePolicy:
        return cls()

    def allowed(self, operation: str) -> frozenset[Role]:
        return self.role_sets[operation]

    def require(self, actor: Actor, operation: str) -> None:
        """Raise ``AuthorizationError`` unless ``actor.role`` may run ``operation``."""
        require_role(actor, self.allowed(operation), operation)


def require_role(actor: Actor, allowed: frozenset[Role], operation: str) -> None:
    if actor.role not in allowed:
        logger.warning(
            "authorization_denied",
            extra={
                "denied_operation": operation,
                "role": actor.role.value,
                "user_id": str(actor.user_id),
            },
        )
        raise AuthorizationError(operation, actor.role.value)
