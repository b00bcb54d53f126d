"""
AuditService -- append-only log of settlement actions.

Responsibility:
    Writes one ``AuditEvent`` per significant state change (container,
    expense, payout, sale, return, inventory and period actions), in the
    same transaction as the change itself, and reads the trail back.

Architecture position:
    Kernel > Services.  Called by every module service and by the period
    close service after the mutation has been flushed.

Invariants enforced:
    - ``seq`` comes from the ``audit_event`` counter (SequenceService),
      never from max(seq) + 1.
    - Rows are never updated or deleted (db/immutability.py).
    - Payloads hold only JSON-native values; UUID, Decimal, date and
      Enum values are stored as strings.

Failure modes:
    - IntegrityError on a concurrent counter race (absorbed by
      SequenceService); anything else propagates and aborts the caller's
      unit of work together with the mutation.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.audit")


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal, datetime, date)):
        return value.isoformat() if isinstance(value, (datetime, date)) else str(value)
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    return str(value)


@dataclass(frozen=True)
class AuditTrailEntry:
    seq: int
    action: str
    actor_id: UUID
    occurred_at: datetime
    payload: dict[str, Any]


class AuditService:
    """
    Audit sink.

    Non-goals:
        Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        actor_id: UUID,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        seq = self._sequences.next_value(SequenceService.AUDIT_EVENT)
        event = AuditEvent(
            seq=seq,
            action=action.value,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=_plain(dict(metadata or {})),
        )
        self._session.add(event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return event

    def trail(self, entity_type: str, entity_id: UUID) -> tuple[AuditTrailEntry, ...]:
        """Every event recorded for one entity, oldest first."""
        rows = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars()
        return tuple(
            AuditTrailEntry(
                seq=row.seq,
                action=row.action,
                actor_id=row.actor_id,
                occurred_at=row.occurred_at,
                payload=row.payload or {},
            )
            for row in rows
        )
