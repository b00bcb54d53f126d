"""
Module: settlement_kernel.selectors.base
Responsibility: Abstract base for read-only query selectors.  Selectors
    are the read side used by dashboards, the close checklist, reports and
    the live counters that replaced the cached system-control fields.
Architecture position: Kernel > Selectors.  May import db/base.py,
    domain/ and models/.  MUST NOT import services/ or any outer package.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Every figure is derived from source rows at call time; nothing is
      cached between calls.
    - The caller owns the session and its transaction.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from settlement_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Contract:
        Holds the caller's ``Session`` and performs read-only queries.

    Non-goals:
        Defines no query methods of its own.
    """

    def __init__(self, session: Session):
        self.session = session
