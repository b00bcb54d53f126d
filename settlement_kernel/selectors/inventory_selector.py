"""
Inventory selector -- live warehouse counters.

Replaces the cached "discrepancy count" and "inventory checked at"
fields of the old system-control row: both are recomputed from
``InventorySession`` rows on every call.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from settlement_kernel.domain.statuses import InventorySessionStatus
from settlement_kernel.models.inventory import InventorySession
from settlement_kernel.selectors.base import BaseSelector


class InventorySelector(BaseSelector[InventorySession]):

    def open_discrepancy_count(self) -> int:
        return self.session.execute(
            select(func.count(InventorySession.id)).where(
                InventorySession.status == InventorySessionStatus.DISCREPANCY.value
            )
        ).scalar_one()

    def last_confirmed_at(self) -> datetime | None:
        return self.session.execute(
            select(func.max(InventorySession.confirmed_at)).where(
                InventorySession.status == InventorySessionStatus.CONFIRMED.value
            )
        ).scalar_one()

    def status_counts(self, period_id: UUID) -> dict[InventorySessionStatus, int]:
        """Number of sessions per status for one period; absent statuses count 0."""
        rows = self.session.execute(
            select(InventorySession.status, func.count(InventorySession.id))
            .where(InventorySession.period_id == period_id)
            .group_by(InventorySession.status)
        )
        counts = {status: 0 for status in InventorySessionStatus}
        for status, count in rows:
            counts[InventorySessionStatus(status)] = count
        return counts

    def sessions_for_period(self, period_id: UUID) -> list[InventorySession]:
        return list(
            self.session.execute(
                select(InventorySession)
                .where(InventorySession.period_id == period_id)
                .order_by(InventorySession.submitted_at, InventorySession.id)
            ).scalars()
        )
