"""
Named counters behind audit sequence numbers and document numbers.

Each row is locked ``FOR UPDATE`` while it is incremented, so values are
strictly monotonic per name and consumed only if the caller commits.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    current_value: Mapped[int] = mapped_column(default=0, nullable=False)
    # Calendar year for counters that restart every year; NULL otherwise
    year: Mapped[int | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
