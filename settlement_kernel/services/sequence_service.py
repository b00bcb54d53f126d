"""
SequenceService -- monotonic counters behind audit sequence numbers and
document numbers.

Responsibility:
    Hands out strictly increasing integers per counter name from a locked
    counter row, and formats invoice / return numbers from yearly counters.

Architecture position:
    Kernel > Services.  Called by AuditService for ``AuditEvent.seq`` and
    by the sales module for invoice and return numbers.

Invariants enforced:
    - The locked counter row is the only source of the next value; the
      aggregate-max-plus-one pattern is never used.
    - An increment is consumed only if the caller's transaction commits.
    - Yearly counters restart at 1 when the calendar year changes.

Failure modes:
    - IntegrityError on a concurrent first use of a counter is absorbed
      by a savepoint rollback and a locked re-read.
"""

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional counter allocation.

    Non-goals:
        Does NOT call ``session.commit()``; the caller owns the boundary.
    """

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _acquire(self, name: str, year: int | None) -> SequenceCounter:
        counter = self._locked_counter(name)
        if counter is not None:
            return counter

        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=0, year=year)
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            savepoint.rollback()
            counter = self._locked_counter(name)
            if counter is None:
                raise
            return counter

    def next_value(self, name: str) -> int:
        """Next value (>= 1) of a counter that never restarts."""
        counter = self._acquire(name, None)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def next_yearly_value(self, name: str, year: int) -> int:
        """Next value of a counter that restarts at 1 every calendar year."""
        counter = self._acquire(name, year)
        if counter.year != year:
            counter.year = year
            counter.current_value = 0
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "year": year, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None


class DocumentNumberService:
    """
    Human-readable document numbers: ``<PREFIX>-<YYYY>-<zero-padded counter>``.

    Each prefix has its own yearly counter, so ``INV`` and ``RET`` numbers
    advance independently.  Numbers are allocated inside the caller's
    transaction; a rolled-back sale gives its number back.
    """

    def __init__(self, session: Session, pad_width: int = 6):
        if pad_width < 1:
            raise ValueError("pad_width must be positive")
        self._sequences = SequenceService(session)
        self._pad_width = pad_width

    def next_document_number(self, prefix: str, when: date | datetime) -> str:
        prefix = (prefix or "").strip().upper()
        if not prefix:
            raise ValidationError("A document prefix is required", field="prefix")
        value = self._sequences.next_yearly_value(f"doc:{prefix}", when.year)
        return f"{prefix}-{when.year}-{value:0{self._pad_width}d}"
