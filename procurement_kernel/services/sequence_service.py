"""
SequenceService -- atomic, year-scoped document numbers.

Responsibility:
    Issues human-readable numbers such as ``REQ-2025-00007``.  One counter
    row exists per (sequence name, year); the year comes from the injected
    clock.

Architecture position:
    Kernel > Services -- collaborator.  Called by RequisitionService and
    PurchaseOrderService while creating a document.

Invariants enforced:
    - Atomic increment-and-fetch: the counter is advanced with a single
      ``UPDATE ... SET current_value = current_value + 1``.  The row lock
      taken by that UPDATE is held until the caller's transaction ends,
      so the following read returns the value this transaction owns.
      Read-then-write in Python is never used.
    - First use of a (name, year) pair inserts the row inside a SAVEPOINT;
      a concurrent insert loses on UNIQUE(name, year) and falls back to
      the UPDATE path without disturbing the caller's transaction.

Failure modes:
    - IntegrityError on the first-use race: handled (savepoint + retry).

Audit relevance:
    Allocation is logged at DEBUG with sequence name, year and value.
"""

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.sequence import (
    SequenceFormat,
    format_for,
    format_sequence_number,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.sequence import SequenceCounterModel
from procurement_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceService(BaseService):
    """
    Generates transactional, year-scoped sequence numbers.

    Contract:
        ``next(name)`` returns the formatted next number for ``name`` in
        the clock's current year.  The increment is only visible once the
        caller's transaction commits; on rollback the value is returned.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT guarantee gap-free numbering across rolled-back
          PostgreSQL transactions that lost a first-use race.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        formats: dict[str, SequenceFormat] | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._formats = formats

    def next(self, name: str) -> str:
        """Allocate and format the next number for ``name``."""
        year = self._clock.now().year
        value = self.next_value(name, year)
        return format_sequence_number(format_for(name, self._formats), year, value)

    def next_value(self, name: str, year: int) -> int:
        """Atomically increment the (name, year) counter and return it."""
        if self._increment(name, year) == 0:
            savepoint = self.session.begin_nested()
            try:
                self.session.add(
                    SequenceCounterModel(name=name, year=year, current_value=1)
                )
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": name, "year": year, "value": 1},
                )
                return 1
            except IntegrityError:
                # Another transaction created the counter first
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": name, "year": year},
                )
                savepoint.rollback()
                self._increment(name, year)

        value = self.current_value(name, year)
        if value is None or value <= 0:
            raise RuntimeError(f"Sequence counter {name}/{year} vanished after increment")
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "year": year, "value": value},
        )
        return value

    def current_value(self, name: str, year: int) -> int | None:
        """Current value of a counter without incrementing it."""
        return self.session.execute(
            select(SequenceCounterModel.current_value).where(
                SequenceCounterModel.name == name,
                SequenceCounterModel.year == year,
            )
        ).scalar_one_or_none()

    def _increment(self, name: str, year: int) -> int:
        result = self.session.execute(
            update(SequenceCounterModel)
            .where(
                SequenceCounterModel.name == name,
                SequenceCounterModel.year == year,
            )
            .values(current_value=SequenceCounterModel.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
