"""Tests for role-set authorization."""

from uuid import uuid4

import pytest

from settlement_kernel.domain.access import Actor, Operation, Role, RolePolicy, require_role
from settlement_kernel.exceptions import AuthorizationError


class TestDefaultPolicy:
    def setup_method(self):
        self.policy = RolePolicy.default()

    @pytest.mark.parametrize(
        "operation,allowed",
        [
            (Operation.CONTAINERS_MANAGE, {Role.SUPER_ADMIN, Role.ADMIN}),
            (Operation.STOCK_MANAGE, {Role.SUPER_ADMIN}),
            (Operation.EXPENSES_ADD, {Role.SUPER_ADMIN, Role.ADMIN, Role.ACCOUNTANT}),
            (Operation.SALES_MANAGE, {Role.SUPER_ADMIN, Role.ADMIN, Role.MANAGER}),
            (Operation.PERIODS_UNLOCK, {Role.SUPER_ADMIN}),
            (Operation.WAREHOUSE_COUNT, {Role.SUPER_ADMIN, Role.ADMIN, Role.WAREHOUSE}),
            (Operation.SALES_DELETE, {Role.SUPER_ADMIN}),
            (Operation.INVENTORY_DELETE, {Role.SUPER_ADMIN, Role.ADMIN}),
            (Operation.INVENTORY_DELETE_CONFIRMED, {Role.SUPER_ADMIN}),
        ],
    )
    def test_role_sets(self, operation, allowed):
        assert self.policy.allowed(operation) == frozenset(allowed)

    def test_investor_cannot_manage_anything(self):
        investor = Actor(uuid4(), Role.INVESTOR)
        for operation in (
            Operation.CONTAINERS_MANAGE,
            Operation.SALES_MANAGE,
            Operation.INVESTORS_MANAGE,
            Operation.PERIODS_LOCK,
        ):
            with pytest.raises(AuthorizationError):
                self.policy.require(investor, operation)

    def test_allowed_role_passes(self):
        self.policy.require(Actor(uuid4(), Role.MANAGER), Operation.SALES_MANAGE)

    def test_unknown_operation(self):
        with pytest.raises(KeyError):
            self.policy.allowed("containers.destroy")


class TestRequireRole:
    def test_denial_carries_operation_and_role(self, captured_logs):
        actor = Actor(uuid4(), Role.WAREHOUSE)
        with pytest.raises(AuthorizationError) as exc_info:
            require_role(actor, frozenset({Role.ADMIN}), "custom.op")

        assert exc_info.value.operation == "custom.op"
        assert exc_info.value.role == "WAREHOUSE"
        denied = [r for r in captured_logs() if r["message"] == "authorization_denied"]
        assert denied[0]["denied_operation"] == "custom.op"

    def test_custom_policy(self):
        policy = RolePolicy({Operation.SALES_MANAGE: frozenset({Role.ACCOUNTANT})})
        policy.require(Actor(uuid4(), Role.ACCOUNTANT), Operation.SALES_MANAGE)
        with pytest.raises(AuthorizationError):
            policy.require(Actor(uuid4(), Role.MANAGER), Operation.SALES_MANAGE)
