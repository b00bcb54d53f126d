"""
Module: settlement_kernel.db.base
Responsibility: Declarative base and column conventions shared by every
    settlement ORM model: UUID primary keys, Numeric money columns,
    UTC-normalised timestamps and actor tracking.
Architecture position: Kernel > DB.  Lowest import target in the kernel;
    must not import from models/, services/ or any outer package.

Invariants enforced:
    - Money is ``Decimal`` stored as Numeric(38, 9).  Float is never used
      for amounts, shares or unit costs.
    - Timestamps are always timezone-aware UTC when loaded, on every
      backend (SQLite drops tzinfo on storage; ``UTCDateTime`` restores it).
    - Every tracked row records the actor that created it.

Failure modes:
    - ValueError from ``UTCDateTime`` when a naive datetime is bound.

Audit relevance:
    ``TrackedBase`` columns are audit metadata and may change on rows whose
    financial columns are frozen (see db/immutability.py).
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID persisted as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime normalised to UTC.

    Contract:
        Binds only aware datetimes and always loads aware UTC datetimes,
        so clock-derived values compare cleanly with loaded ones.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime {value!r} cannot be stored")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all settlement models.

    Guarantees:
        - ``id`` is a uuid4 primary key stored as String(36).
        - Annotated ``Decimal`` columns become Numeric(38, 9).
        - Annotated ``datetime`` columns become ``UTCDateTime``.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        date: Date(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base recording who created and last touched a row.

    Guarantees:
        - ``created_at`` / ``updated_at`` come from the database clock.
        - ``created_by_id`` is required; ``updated_by_id`` is optional.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )
