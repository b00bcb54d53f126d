"""
Tests for warehouse counts and their confirmation.

Covers:
- Matching and discrepancy counts, codes and references
- Counts leave stock untouched
- Confirmation codes: format, expiry, idempotency
- Discrepancy resolution and hand-off to an administrator
- Live counters
- Deleting stale counts
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from settlement_engines.cost_allocation import ItemLine
from settlement_kernel.domain.statuses import InventorySessionStatus
from settlement_kernel.exceptions import (
    AuthorizationError,
    ContainerNotArrivedError,
    InventoryCodeError,
    NotFoundError,
    PeriodLockedError,
    StateConflictError,
    ValidationError,
)
from settlement_kernel.models import AuditAction, InventorySession, InventorySessionItem
from settlement_kernel.services.audit_service import AuditService
from settlement_modules.inventory import CountRequest, InventoryService


def _lines(session, count):
    return list(
        session.execute(
            select(InventorySessionItem).where(InventorySessionItem.session_id == count.id)
        ).scalars()
    )


@pytest.fixture
def counted_item(arrived_container):
    _, item = arrived_container()
    return item


@pytest.fixture
def discrepancy(inventory_service, warehouse, counted_item):
    return inventory_service.submit_count(
        warehouse, "Weekly count", [CountRequest(counted_item.id, 98)]
    )


class TestSubmitCount:
    def test_matching_count_is_pending_with_code(self, inventory_service, warehouse, counted_item, session):
        count = inventory_service.submit_count(
            warehouse, "  Weekly count ", [CountRequest(counted_item.id, 100)]
        )

        assert count.status == InventorySessionStatus.PENDING
        assert count.reference.startswith("CNT-")
        assert count.title == "Weekly count"
        assert len(count.code) == 3 and count.code.isdigit()
        assert count.discrepancy_count == 0
        lines = _lines(session, count)
        assert [(l.system_quantity, l.actual_quantity, l.difference) for l in lines] == [(100, 100, 0)]

    def test_mismatch_is_discrepancy_without_code(self, discrepancy, session):
        assert discrepancy.status == InventorySessionStatus.DISCREPANCY
        assert discrepancy.reference.startswith("DISC-")
        assert discrepancy.code is None
        assert discrepancy.discrepancy_count == 1
        assert [l.difference for l in _lines(session, discrepancy)] == [-2]

    def test_count_never_changes_stock(self, discrepancy, counted_item, session):
        session.refresh(counted_item)
        assert counted_item.quantity == 100

    def test_one_bad_line_flags_whole_count(self, inventory_service, warehouse, arrived_container):
        _, first = arrived_container("CN-A")
        _, second = arrived_container("CN-B")

        count = inventory_service.submit_count(
            warehouse,
            "Full count",
            [CountRequest(first.id, 100), CountRequest(second.id, 101)],
        )

        assert count.status == InventorySessionStatus.DISCREPANCY
        assert count.discrepancy_count == 1

    def test_title_required(self, inventory_service, warehouse, counted_item):
        with pytest.raises(ValidationError):
            inventory_service.submit_count(warehouse, "   ", [CountRequest(counted_item.id, 100)])

    def test_lines_required(self, inventory_service, warehouse):
        with pytest.raises(ValidationError):
            inventory_service.submit_count(warehouse, "Empty", [])

    def test_item_counted_twice(self, inventory_service, warehouse, counted_item):
        with pytest.raises(ValidationError):
            inventory_service.submit_count(
                warehouse,
                "Twice",
                [CountRequest(counted_item.id, 100), CountRequest(counted_item.id, 100)],
            )

    def test_negative_count_rejected(self, counted_item):
        with pytest.raises(ValidationError):
            CountRequest(counted_item.id, -1)

    def test_unknown_item(self, inventory_service, warehouse):
        with pytest.raises(NotFoundError):
            inventory_service.submit_count(warehouse, "Ghost", [CountRequest(uuid4(), 1)])

    def test_in_transit_stock_cannot_be_counted(
        self, inventory_service, container_service, warehouse, admin, product, stock_rows
    ):
        container = container_service.create_container(
            admin,
            "CN-SEA",
            date(2024, 1, 2),
            Decimal("0.14"),
            items=[ItemLine(product.id, 10, unit_price_usd=Decimal("10"), sale_price_usd=Decimal("20"))],
        )
        item = stock_rows(container.id)[0]

        with pytest.raises(ContainerNotArrivedError):
            inventory_service.submit_count(warehouse, "Early", [CountRequest(item.id, 10)])

    def test_manager_cannot_count(self, inventory_service, manager, counted_item):
        with pytest.raises(AuthorizationError):
            inventory_service.submit_count(manager, "Count", [CountRequest(counted_item.id, 100)])


class TestConfirmCode:
    @pytest.fixture
    def pending(self, inventory_service, warehouse, counted_item):
        return inventory_service.submit_count(
            warehouse, "Weekly count", [CountRequest(counted_item.id, 100)]
        )

    def test_confirms_pending_count(self, inventory_service, accountant, pending, deterministic_clock):
        count = inventory_service.confirm_code(accountant, f" {pending.code} ")

        assert count.id == pending.id
        assert count.status == InventorySessionStatus.CONFIRMED
        assert count.confirmed_by_id == accountant.user_id
        assert count.confirmed_at == deterministic_clock.now()
        assert count.sent_to_admin_at is not None

    def test_second_confirm_is_idempotent(self, inventory_service, accountant, pending, captured_logs):
        first = inventory_service.confirm_code(accountant, pending.code)
        second = inventory_service.confirm_code(accountant, pending.code)

        assert second.id == first.id
        assert second.status == InventorySessionStatus.CONFIRMED
        assert any(r["message"] == "inventory_code_already_confirmed" for r in captured_logs())

    @pytest.mark.parametrize("raw", ["", "12", "1234", "12a", None])
    def test_malformed_code(self, inventory_service, accountant, raw):
        with pytest.raises(InventoryCodeError):
            inventory_service.confirm_code(accountant, raw)

    def test_unknown_code(self, inventory_service, accountant, pending):
        other = "100" if pending.code != "100" else "101"
        with pytest.raises(InventoryCodeError):
            inventory_service.confirm_code(accountant, other)

    def test_expired_code(self, inventory_service, accountant, pending, deterministic_clock):
        deterministic_clock.advance(minutes=11)

        with pytest.raises(InventoryCodeError, match="expired"):
            inventory_service.confirm_code(accountant, pending.code)

    def test_code_valid_until_ttl(self, inventory_service, accountant, pending, deterministic_clock):
        deterministic_clock.advance(minutes=10)

        count = inventory_service.confirm_code(accountant, pending.code)

        assert count.status == InventorySessionStatus.CONFIRMED

    def test_warehouse_cannot_confirm(self, inventory_service, warehouse, pending):
        with pytest.raises(AuthorizationError):
            inventory_service.confirm_code(warehouse, pending.code)


class TestDiscrepancyWorkflow:
    def test_resolve_issues_code(self, inventory_service, admin, discrepancy, session):
        count = inventory_service.resolve_discrepancy(admin, discrepancy.id)

        assert count.status == InventorySessionStatus.PENDING
        assert len(count.code) == 3
        assert count.resolved_by_id == admin.user_id
        assert count.discrepancy_count == 1
        assert [l.actual_quantity for l in _lines(session, count)] == [98]

    def test_resolved_count_can_be_confirmed(self, inventory_service, admin, accountant, discrepancy):
        resolved = inventory_service.resolve_discrepancy(admin, discrepancy.id)

        count = inventory_service.confirm_code(accountant, resolved.code)

        assert count.status == InventorySessionStatus.CONFIRMED

    def test_resolve_requires_discrepancy(self, inventory_service, admin, discrepancy):
        inventory_service.resolve_discrepancy(admin, discrepancy.id)

        with pytest.raises(StateConflictError):
            inventory_service.resolve_discrepancy(admin, discrepancy.id)

    def test_accountant_cannot_resolve(self, inventory_service, accountant, discrepancy):
        with pytest.raises(AuthorizationError):
            inventory_service.resolve_discrepancy(accountant, discrepancy.id)

    def test_resolve_unknown_session(self, inventory_service, admin):
        with pytest.raises(NotFoundError):
            inventory_service.resolve_discrepancy(admin, uuid4())

    def test_send_to_admin_is_idempotent(self, inventory_service, warehouse, discrepancy, deterministic_clock):
        sent_at = deterministic_clock.now()
        inventory_service.mark_sent_to_admin(warehouse, discrepancy.id)
        deterministic_clock.advance(minutes=5)

        second = inventory_service.mark_sent_to_admin(warehouse, discrepancy.id)

        assert second.sent_to_admin_at == sent_at

    def test_only_discrepancies_are_sent(self, inventory_service, warehouse, counted_item):
        count = inventory_service.submit_count(
            warehouse, "Clean count", [CountRequest(counted_item.id, 100)]
        )

        with pytest.raises(StateConflictError):
            inventory_service.mark_sent_to_admin(warehouse, count.id)


class TestCodes:
    def test_codes_exhausted(self, session, deterministic_clock, control, warehouse, counted_item):
        service = InventoryService(
            session, clock=deterministic_clock, control=control, code_source=lambda low, high: 123
        )
        first = service.submit_count(warehouse, "First", [CountRequest(counted_item.id, 100)])
        assert first.code == "123"

        with pytest.raises(InventoryCodeError):
            service.submit_count(warehouse, "Second", [CountRequest(counted_item.id, 100)])

    def test_confirmed_code_is_still_taken(
        self, session, deterministic_clock, control, warehouse, accountant, counted_item
    ):
        draws = iter([123, 123, 456])
        service = InventoryService(
            session,
            clock=deterministic_clock,
            control=control,
            code_source=lambda low, high: next(draws),
        )
        first = service.submit_count(warehouse, "First", [CountRequest(counted_item.id, 100)])
        service.confirm_code(accountant, first.code)

        second = service.submit_count(warehouse, "Second", [CountRequest(counted_item.id, 100)])

        assert second.code == "456"


class TestLiveCounters:
    def test_open_discrepancies(self, inventory_service, admin, discrepancy):
        assert inventory_service.open_discrepancy_count() == 1

        inventory_service.resolve_discrepancy(admin, discrepancy.id)

        assert inventory_service.open_discrepancy_count() == 0

    def test_last_confirmed_at(self, inventory_service, warehouse, accountant, counted_item):
        assert inventory_service.last_confirmed_at() is None

        count = inventory_service.submit_count(
            warehouse, "Weekly count", [CountRequest(counted_item.id, 100)]
        )
        inventory_service.confirm_code(accountant, count.code)

        assert inventory_service.last_confirmed_at() is not None


class TestDeleteSession:
    @pytest.fixture
    def pending(self, inventory_service, warehouse, counted_item):
        return inventory_service.submit_count(
            warehouse, "Weekly count", [CountRequest(counted_item.id, 100)]
        )

    def test_expired_count_is_removed(
        self, inventory_service, accountant, admin, pending, session, deterministic_clock
    ):
        deterministic_clock.advance(minutes=11)
        with pytest.raises(InventoryCodeError):
            inventory_service.confirm_code(accountant, pending.code)

        inventory_service.delete_session(admin, pending.id)

        assert session.get(InventorySession, pending.id) is None
        assert _lines(session, pending) == []
        trail = AuditService(session, deterministic_clock).trail("InventorySession", pending.id)
        assert trail[-1].action == AuditAction.INVENTORY_DELETED.value
        assert trail[-1].payload["status"] == InventorySessionStatus.PENDING.value

    def test_discrepancy_can_be_removed(self, inventory_service, admin, discrepancy, session):
        inventory_service.delete_session(admin, discrepancy.id)

        assert session.get(InventorySession, discrepancy.id) is None
        assert inventory_service.open_discrepancy_count() == 0

    def test_confirmed_count_needs_super_admin(
        self, inventory_service, accountant, admin, super_admin, pending, session
    ):
        inventory_service.confirm_code(accountant, pending.code)

        with pytest.raises(AuthorizationError):
            inventory_service.delete_session(admin, pending.id)
        assert session.get(InventorySession, pending.id) is not None

        inventory_service.delete_session(super_admin, pending.id)
        assert session.get(InventorySession, pending.id) is None

    def test_freed_code_can_be_issued_again(
        self, session, deterministic_clock, control, warehouse, admin, counted_item
    ):
        service = InventoryService(
            session, clock=deterministic_clock, control=control, code_source=lambda low, high: 123
        )
        first = service.submit_count(warehouse, "First", [CountRequest(counted_item.id, 100)])
        service.delete_session(admin, first.id)

        second = service.submit_count(warehouse, "Second", [CountRequest(counted_item.id, 100)])

        assert second.code == "123"

    def test_locked_period(self, inventory_service, period_service, admin, pending, test_actor_id):
        period_service.lock(pending.period_id, test_actor_id)

        with pytest.raises(PeriodLockedError):
            inventory_service.delete_session(admin, pending.id)

    def test_warehouse_cannot_delete(self, inventory_service, warehouse, pending):
        with pytest.raises(AuthorizationError):
            inventory_service.delete_session(warehouse, pending.id)

    def test_unknown_session(self, inventory_service, admin):
        with pytest.raises(NotFoundError):
            inventory_service.delete_session(admin, uuid4())
