"""
BaseService -- common constructor for kernel services.

Kernel services (period gate, sequences, document numbers, audit) flush
inside the caller's unit of work and never commit or roll back; the
module service that owns the public operation does.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from settlement_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Contract:
        Holds the caller's ``Session``; persists with ``flush()`` only.

    Non-goals:
        Transaction lifecycle.  See ``settlement_kernel.db.unit_of_work``.
    """

    def __init__(self, session: Session):
        self.session = session
