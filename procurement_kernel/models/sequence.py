"""
Module: procurement_kernel.models.sequence
Responsibility: Counter rows for year-scoped document numbers.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE(name, year): exactly one counter per sequence per year, so the
      first allocation of a new year can race safely on INSERT.
"""

from sqlalchemy import BigInteger, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base


class SequenceCounterModel(Base):
    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("name", "year", name="uq_sequence_counters_name_year"),
    )

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}/{self.year}={self.current_value}>"
