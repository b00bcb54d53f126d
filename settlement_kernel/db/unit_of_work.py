"""
Module: settlement_kernel.db.unit_of_work
Responsibility: Delimit one public settlement operation on an explicitly
    supplied SQLAlchemy session.
Architecture position: Kernel > DB.  Used by every module service and by
    the period close service at their public method boundary.

Invariants enforced:
    - The outermost unit of work on a session commits on success and rolls
      back on any exception, which is then re-raised unchanged.
    - A unit of work opened while another is active on the same session
      joins it through a SAVEPOINT instead of committing, so compound
      operations (an exchange, a container created with its investments)
      remain one transaction.
    - No unit of work ever opens a second session or connection.

Failure modes:
    - Whatever the wrapped operation raises, after rollback.

Audit relevance:
    Commit and rollback are logged with the operation name and the acting
    user bound into ``LogContext``.
"""

from contextlib import contextmanager
from typing import TYPE_CHECKING, Generator

from sqlalchemy.orm import Session

from settlement_kernel.logging_config import LogContext, get_logger

if TYPE_CHECKING:
    from settlement_kernel.domain.access import Actor

logger = get_logger("db.unit_of_work")

_DEPTH_KEY = "settlement_uow_depth"


def in_unit_of_work(session: Session) -> bool:
    return session.info.get(_DEPTH_KEY, 0) > 0


@contextmanager
def unit_of_work(
    session: Session,
    operation: str,
    actor: "Actor | None" = None,
) -> Generator[Session, None, None]:
    """
    Run the body as one atomic operation on ``session``.

    Usage::

        with unit_of_work(session, "sales.add_payment", actor):
            ...  # flushes only; commit happens on exit
    """
    depth = session.info.get(_DEPTH_KEY, 0)
    context = LogContext.bind(
        operation=operation,
        actor_id=actor.user_id if actor else None,
        actor_role=actor.role.value if actor else None,
    )

    if depth:
        with context, session.begin_nested():
            session.info[_DEPTH_KEY] = depth + 1
            try:
                yield session
            finally:
                session.info[_DEPTH_KEY] = depth
        return

    with context:
        session.info[_DEPTH_KEY] = 1
        try:
            yield session
            session.commit()
            logger.debug("unit_of_work_committed", extra={"operation": operation})
        except Exception as exc:
            session.rollback()
            logger.warning(
                "unit_of_work_rolled_back",
                extra={
                    "operation": operation,
                    "error_code": getattr(exc, "code", None),
                    "error": str(exc),
                },
            )
            raise
        finally:
            session.info[_DEPTH_KEY] = 0
