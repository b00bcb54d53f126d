"""
PeriodService -- the Period Gate.

Responsibility:
    Resolves the financial period owning a date (creating it OPEN on first
    access), rejects money-affecting mutations against LOCKED periods, and
    performs the raw OPEN <-> LOCKED transitions.

Architecture position:
    Kernel > Services.  Called first by every money-mutating module
    operation, inside that operation's unit of work.  The close checklist
    that must pass before ``lock`` lives in
    ``settlement_services.period_close``, which is the public lock/unlock
    entry point.

Invariants enforced:
    - One period per (year, month); concurrent first access converges on
      a single row (savepoint + IntegrityError retry).
    - A LOCKED period rejects every gated mutation with PeriodLockedError.
    - Unlock requires a non-empty reason, which is stored on the row.
    - Flush-only: never commits or rolls back.

Failure modes:
    - PeriodLockedError: gate check against a LOCKED period.
    - NotFoundError: unknown period id.
    - ValidationError: empty unlock reason, month out of range.
    - StateConflictError: lock of a LOCKED period, unlock of an OPEN one.

Audit relevance:
    Lock and unlock are logged at INFO with actor and reason; gate
    rejections at WARNING.
"""

from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import (
    NotFoundError,
    PeriodLockedError,
    StateConflictError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.financial_period import FinancialPeriod, PeriodStatus
from settlement_kernel.services.base import BaseService

logger = get_logger("services.period")


def month_of(day: date) -> tuple[int, int]:
    return day.year, day.month


def previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """Half-open UTC range [first instant of the month, first instant of the next)."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end_year, end_month = next_month(year, month)
    return start, datetime(end_year, end_month, 1, tzinfo=timezone.utc)


class PeriodService(BaseService[FinancialPeriod]):
    """
    Period Gate over ``FinancialPeriod`` rows.

    Contract:
        ``assert_open_for_date`` / ``assert_open_by_id`` return the OPEN
        period or raise.  ``lock`` / ``unlock`` change status without
        evaluating the close checklist.

    Guarantees:
        - Gate checks take a shared row lock so a concurrent lock waits
          for in-flight mutations of the same month.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def get(self, period_id: UUID, for_update: bool = False) -> FinancialPeriod:
        stmt = select(FinancialPeriod).where(FinancialPeriod.id == period_id)
        if for_update:
            stmt = stmt.with_for_update()
        period = self.session.execute(stmt).scalar_one_or_none()
        if period is None:
            raise NotFoundError("FinancialPeriod", period_id)
        return period

    def find(self, year: int, month: int) -> FinancialPeriod | None:
        return self.session.execute(
            select(FinancialPeriod).where(
                FinancialPeriod.year == year,
                FinancialPeriod.month == month,
            )
        ).scalar_one_or_none()

    def get_or_create(self, year: int, month: int, actor_id: UUID) -> FinancialPeriod:
        """Return the period for (year, month), creating it OPEN if absent."""
        if not 1 <= month <= 12:
            raise ValidationError(f"Month {month} is out of range", field="month")

        existing = self.find(year, month)
        if existing is not None:
            return existing

        savepoint = self.session.begin_nested()
        try:
            period = FinancialPeriod(
                year=year,
                month=month,
                status=PeriodStatus.OPEN.value,
                created_by_id=actor_id,
            )
            self.session.add(period)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Another transaction created the same month first
            savepoint.rollback()
            logger.debug("period_create_race", extra={"year": year, "month": month})
            period = self.find(year, month)
            if period is None:
                raise
            return period

        logger.info(
            "period_created",
            extra={"period_id": str(period.id), "year": year, "month": month},
        )
        return period

    def get_or_create_for_date(self, day: date, actor_id: UUID) -> FinancialPeriod:
        year, month = month_of(day)
        return self.get_or_create(year, month, actor_id)

    def current_period(self, actor_id: UUID) -> FinancialPeriod:
        """
        The period new activity belongs to.

        The calendar month's period if it exists.  Otherwise, while the
        latest earlier period is still OPEN, work stays in it; once that
        is locked the calendar month's period is created.
        """
        year, month = month_of(self._clock.today())
        existing = self.find(year, month)
        if existing is not None:
            return existing

        latest = self.session.execute(
            select(FinancialPeriod)
            .where(
                or_(
                    FinancialPeriod.year < year,
                    and_(FinancialPeriod.year == year, FinancialPeriod.month < month),
                )
            )
            .order_by(FinancialPeriod.year.desc(), FinancialPeriod.month.desc())
            .limit(1)
        ).scalar_one_or_none()
        if latest is not None and latest.is_open:
            return latest
        return self.get_or_create(year, month, actor_id)

    def previous_period(self, day: date | None = None) -> FinancialPeriod | None:
        year, month = previous_month(*month_of(day or self._clock.today()))
        return self.find(year, month)

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    def assert_open_for_date(self, day: date, actor_id: UUID) -> FinancialPeriod:
        """Resolve (or create) the period owning ``day``; raise if LOCKED."""
        period = self.get_or_create_for_date(day, actor_id)
        return self._assert_open(period.id)

    def assert_open_by_id(self, period_id: UUID) -> FinancialPeriod:
        """Gate check for an entity that already carries its period id."""
        return self._assert_open(period_id)

    def _assert_open(self, period_id: UUID) -> FinancialPeriod:
        period = self.session.execute(
            select(FinancialPeriod)
            .where(FinancialPeriod.id == period_id)
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise NotFoundError("FinancialPeriod", period_id)
        if period.is_locked:
            logger.warning(
                "period_gate_rejected",
                extra={
                    "period_id": str(period.id),
                    "year": period.year,
                    "month": period.month,
                },
            )
            raise PeriodLockedError(period.year, period.month)
        return period

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def lock(
        self,
        period_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> FinancialPeriod:
        """OPEN -> LOCKED.  The caller has already evaluated the checklist."""
        period = self.get(period_id, for_update=True)
        if period.is_locked:
            raise StateConflictError(f"Financial period {period.label} is already locked")

        period.status = PeriodStatus.LOCKED.value
        period.locked_at = self._clock.now()
        period.locked_by_id = actor_id
        period.lock_reason = reason
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_locked",
            extra={
                "period_id": str(period.id),
                "year": period.year,
                "month": period.month,
                "actor": str(actor_id),
            },
        )
        return period

    def unlock(self, period_id: UUID, actor_id: UUID, reason: str) -> FinancialPeriod:
        """LOCKED -> OPEN with a mandatory reason."""
        if not reason or not reason.strip():
            raise ValidationError("An unlock reason is required", field="reason")

        period = self.get(period_id, for_update=True)
        if not period.is_locked:
            raise StateConflictError(f"Financial period {period.label} is not locked")

        period.status = PeriodStatus.OPEN.value
        period.unlocked_at = self._clock.now()
        period.unlocked_by_id = actor_id
        period.unlock_reason = reason.strip()
        period.locked_at = None
        period.locked_by_id = None
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_unlocked",
            extra={
                "period_id": str(period.id),
                "year": period.year,
                "month": period.month,
                "actor": str(actor_id),
                "reason": period.unlock_reason,
            },
        )
        return period
