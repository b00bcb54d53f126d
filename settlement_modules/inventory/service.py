"""
Inventory Service (``settlement_modules.inventory.service``).

Responsibility
--------------
Warehouse count sessions: snapshotting counted against system stock,
issuing one-time numeric confirmation codes, confirming counts, resolving
discrepancies and flagging them to an administrator.

Architecture position
---------------------
**Modules layer**.  Classification and code checks are pure functions in
``settlement_engines.reconciliation``; this service adds the row access,
code uniqueness and the lifecycle transitions.

Invariants enforced
-------------------
* Only stock of ARRIVED containers is counted.
* Session lines are frozen snapshots; stock is never changed by a count.
* A DISCREPANCY session carries an opaque ``DISC-<hex>`` reference and no
  numeric code; a PENDING session carries a code unique among PENDING
  and CONFIRMED sessions.
* Confirming an already CONFIRMED session changes nothing.

Failure modes
-------------
* ``InventoryCodeError``: malformed, unknown or expired code, a code for
  a discrepancy, or no free code within the attempt budget.
* ``ContainerNotArrivedError``, ``PeriodLockedError``, ``NotFoundError``,
  ``StateConflictError`` for transitions from the wrong status.

Audit relevance
---------------
INVENTORY_SUBMITTED, INVENTORY_CONFIRMED, INVENTORY_RESOLVED,
INVENTORY_SENT_TO_ADMIN and INVENTORY_DELETED events.

Usage::

    service = InventoryService(session, clock=clock, control=control)
    count = service.submit_count(actor, "Monthly count", [CountRequest(item_id, 40)])
    if count.code:
        service.confirm_code(accountant, count.code)
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Sequence
from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_engines.reconciliation import (
    CountLine,
    classify_count,
    is_code_expired,
    normalize_code,
)
from settlement_kernel.db.unit_of_work import unit_of_work
from settlement_kernel.domain.access import Actor, Operation, RolePolicy
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.statuses import InventorySessionStatus
from settlement_kernel.exceptions import (
    ContainerNotArrivedError,
    InventoryCodeError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models import (
    AuditAction,
    Container,
    ContainerItem,
    InventorySession,
    InventorySessionItem,
)
from settlement_kernel.selectors import InventorySelector
from settlement_kernel.services.audit_service import AuditService
from settlement_kernel.services.period_service import PeriodService
from settlement_modules.inventory.models import COUNT_PREFIX, DISCREPANCY_PREFIX, CountRequest

logger = get_logger("modules.inventory.service")

_LIVE_CODE_STATUSES = (
    InventorySessionStatus.PENDING.value,
    InventorySessionStatus.CONFIRMED.value,
)


def _random_code(low: int, high: int) -> int:
    return low + secrets.randbelow(high - low + 1)


class InventoryService:
    """
    Count sessions and their confirmation.

    Contract
    --------
    * ``submit_count``, ``confirm_code``, ``resolve_discrepancy``,
      ``mark_sent_to_admin`` and ``delete_session`` are units of work.
    * ``code_source(low, high)`` draws a candidate code; it defaults to
      ``secrets`` and is injectable for tests.

    Non-goals
    ---------
    * Stock adjustment.  A discrepancy is resolved by people; the stock
      rows are corrected through the containers module if needed.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        control: SystemControl | None = None,
        roles: RolePolicy | None = None,
        code_source: Callable[[int, int], int] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._control = control or SystemControl()
        self._roles = roles or RolePolicy.default()
        self._code_source = code_source or _random_code
        self._periods = PeriodService(session, self._clock)
        self._audit = AuditService(session, self._clock)
        self._selector = InventorySelector(session)

    # =========================================================================
    # Codes
    # =========================================================================

    def _code_taken(self, code: str) -> bool:
        return (
            self._session.execute(
                select(InventorySession.id)
                .where(
                    InventorySession.code == code,
                    InventorySession.status.in_(_LIVE_CODE_STATUSES),
                )
                .limit(1)
            ).scalar_one_or_none()
            is not None
        )

    def _issue_code(self) -> str:
        low, high = self._control.inventory_code_range
        digits = self._control.inventory_code_digits
        for _ in range(self._control.inventory_code_attempts):
            code = str(self._code_source(low, high)).zfill(digits)
            if not self._code_taken(code):
                return code
        logger.error(
            "inventory_code_exhausted",
            extra={"attempts": self._control.inventory_code_attempts, "digits": digits},
        )
        raise InventoryCodeError("Could not issue a free inventory code")

    def _lock_session(self, session_id: UUID) -> InventorySession:
        row = self._session.execute(
            select(InventorySession)
            .where(InventorySession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError("InventorySession", session_id)
        return row

    # =========================================================================
    # Counting
    # =========================================================================

    def _count_lines(self, requests: Sequence[CountRequest]) -> list[CountLine]:
        item_ids = [r.container_item_id for r in requests]
        rows = {
            item.id: (item, container)
            for item, container in self._session.execute(
                select(ContainerItem, Container)
                .join(Container, Container.id == ContainerItem.container_id)
                .where(ContainerItem.id.in_(item_ids))
            )
        }
        lines = []
        for request in requests:
            if request.container_item_id not in rows:
                raise NotFoundError("ContainerItem", request.container_item_id)
            item, container = rows[request.container_item_id]
            if not container.is_arrived:
                raise ContainerNotArrivedError(container.id, container.status)
            lines.append(
                CountLine(
                    container_item_id=item.id,
                    container_id=container.id,
                    product_id=item.product_id,
                    system_quantity=item.quantity,
                    actual_quantity=request.actual_quantity,
                )
            )
        return lines

    def submit_count(
        self,
        actor: Actor,
        title: str,
        requests: Sequence[CountRequest],
        count_date: date | None = None,
    ) -> InventorySession:
        """
        Record a warehouse count.

        Any line whose counted quantity differs from stock makes the whole
        session a DISCREPANCY; otherwise it is PENDING with a fresh code.
        """
        self._roles.require(actor, Operation.WAREHOUSE_COUNT)
        title = (title or "").strip()
        if not title:
            raise ValidationError("A count title is required", field="title")
        if not requests:
            raise ValidationError("A count needs at least one line", field="items")
        if len({r.container_item_id for r in requests}) != len(requests):
            raise ValidationError("A stock item is counted twice", field="items")

        with unit_of_work(self._session, "inventory.submit", actor):
            now = self._clock.now()
            period = self._periods.assert_open_for_date(
                count_date or now.date(), actor.user_id
            )
            result = classify_count(self._count_lines(requests))

            if result.is_discrepancy:
                reference = f"{DISCREPANCY_PREFIX}-{uuid4().hex}"
                code = None
            else:
                reference = f"{COUNT_PREFIX}-{uuid4().hex}"
                code = self._issue_code()

            count = InventorySession(
                reference=reference,
                title=title,
                period_id=period.id,
                status=result.status.value,
                code=code,
                code_issued_at=now if code else None,
                discrepancy_count=result.discrepancy_count,
                submitted_at=now,
                created_by_id=actor.user_id,
            )
            self._session.add(count)
            self._session.flush()
            for line in result.lines:
                self._session.add(
                    InventorySessionItem(
                        session_id=count.id,
                        container_item_id=line.container_item_id,
                        container_id=line.container_id,
                        product_id=line.product_id,
                        system_quantity=line.system_quantity,
                        actual_quantity=line.actual_quantity,
                        difference=line.difference,
                        created_by_id=actor.user_id,
                    )
                )
            self._session.flush()

            self._audit.record(
                AuditAction.INVENTORY_SUBMITTED,
                "InventorySession",
                count.id,
                actor.user_id,
                {
                    "reference": reference,
                    "status": result.status,
                    "lines": len(result.lines),
                    "discrepancy_count": result.discrepancy_count,
                },
            )
            log = logger.warning if result.is_discrepancy else logger.info
            log(
                "inventory_count_submitted",
                extra={
                    "session_id": str(count.id),
                    "status": result.status.value,
                    "discrepancy_count": result.discrepancy_count,
                },
            )
        return count

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def confirm_code(self, actor: Actor, raw_code: str) -> InventorySession:
        """Confirm the PENDING count holding ``raw_code``."""
        self._roles.require(actor, Operation.INVENTORY_CONFIRM)
        digits = self._control.inventory_code_digits
        code = normalize_code(raw_code, digits)
        if code is None:
            raise InventoryCodeError(f"Enter a {digits}-digit code", raw_code)

        with unit_of_work(self._session, "inventory.confirm", actor):
            count = self._session.execute(
                select(InventorySession)
                .where(InventorySession.code == code)
                .order_by(InventorySession.submitted_at.desc(), InventorySession.id)
                .limit(1)
                .with_for_update()
            ).scalar_one_or_none()
            if count is None:
                raise InventoryCodeError("No inventory count with this code", code)
            if count.status == InventorySessionStatus.DISCREPANCY:
                raise InventoryCodeError("The count has discrepancies to resolve first", code)
            if count.status == InventorySessionStatus.CONFIRMED:
                logger.info(
                    "inventory_code_already_confirmed",
                    extra={"session_id": str(count.id)},
                )
                return count

            now = self._clock.now()
            if is_code_expired(count.code_issued_at, now, self._control.inventory_code_ttl_minutes):
                raise InventoryCodeError("The code has expired; submit the count again", code)

            count.status = InventorySessionStatus.CONFIRMED.value
            count.confirmed_at = now
            count.confirmed_by_id = actor.user_id
            count.sent_to_admin_at = count.sent_to_admin_at or now
            count.updated_by_id = actor.user_id
            self._session.flush()

            self._audit.record(
                AuditAction.INVENTORY_CONFIRMED,
                "InventorySession",
                count.id,
                actor.user_id,
                {"reference": count.reference},
            )
            logger.info("inventory_count_confirmed", extra={"session_id": str(count.id)})
        return count

    def resolve_discrepancy(self, actor: Actor, session_id: UUID) -> InventorySession:
        """DISCREPANCY -> PENDING with a new code; the counted lines stay as they are."""
        self._roles.require(actor, Operation.INVENTORY_RESOLVE)

        with unit_of_work(self._session, "inventory.resolve", actor):
            count = self._lock_session(session_id)
            if count.status != InventorySessionStatus.DISCREPANCY:
                raise StateConflictError(
                    f"Inventory count {count.reference} has no open discrepancy"
                )

            now = self._clock.now()
            count.code = self._issue_code()
            count.code_issued_at = now
            count.status = InventorySessionStatus.PENDING.value
            count.resolved_at = now
            count.resolved_by_id = actor.user_id
            count.updated_by_id = actor.user_id
            self._session.flush()

            self._audit.record(
                AuditAction.INVENTORY_RESOLVED,
                "InventorySession",
                count.id,
                actor.user_id,
                {"reference": count.reference, "discrepancy_count": count.discrepancy_count},
            )
            logger.info("inventory_discrepancy_resolved", extra={"session_id": str(count.id)})
        return count

    def mark_sent_to_admin(self, actor: Actor, session_id: UUID) -> InventorySession:
        self._roles.require(actor, Operation.WAREHOUSE_COUNT)

        with unit_of_work(self._session, "inventory.send_to_admin", actor):
            count = self._lock_session(session_id)
            if count.status != InventorySessionStatus.DISCREPANCY:
                raise StateConflictError(
                    f"Only discrepancy counts are sent to an administrator ({count.reference})"
                )
            if count.sent_to_admin_at is not None:
                return count

            count.sent_to_admin_at = self._clock.now()
            count.updated_by_id = actor.user_id
            self._session.flush()
            self._audit.record(
                AuditAction.INVENTORY_SENT_TO_ADMIN,
                "InventorySession",
                count.id,
                actor.user_id,
                {"reference": count.reference},
            )
        return count

    def delete_session(self, actor: Actor, session_id: UUID) -> None:
        """
        Remove a count and its lines, typically one whose code expired.

        ADMIN may delete PENDING and DISCREPANCY counts; a CONFIRMED count
        needs SUPER_ADMIN.  The count's period must be open.
        """
        self._roles.require(actor, Operation.INVENTORY_DELETE)

        with unit_of_work(self._session, "inventory.delete", actor):
            count = self._lock_session(session_id)
            if count.status == InventorySessionStatus.CONFIRMED:
                self._roles.require(actor, Operation.INVENTORY_DELETE_CONFIRMED)
            self._periods.assert_open_by_id(count.period_id)

            lines = list(
                self._session.execute(
                    select(InventorySessionItem).where(InventorySessionItem.session_id == count.id)
                ).scalars()
            )
            for line in lines:
                self._session.delete(line)
            self._session.flush()
            self._session.delete(count)
            self._session.flush()

            self._audit.record(
                AuditAction.INVENTORY_DELETED,
                "InventorySession",
                count.id,
                actor.user_id,
                {
                    "reference": count.reference,
                    "status": count.status,
                    "code": count.code,
                    "lines": len(lines),
                },
            )
            logger.info(
                "inventory_count_deleted",
                extra={"session_id": str(count.id), "status": count.status},
            )

    # =========================================================================
    # Live counters
    # =========================================================================

    def open_discrepancy_count(self) -> int:
        return self._selector.open_discrepancy_count()

    def last_confirmed_at(self) -> datetime | None:
        return self._selector.last_confirmed_at()
