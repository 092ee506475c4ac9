"""
BaseService -- abstract base for kernel services.

Two kinds of service share this base:

* Collaborator services (sequence, policy resolution, budget ledger,
  notification inbox) flush within the caller's transaction and never
  commit.
* Operation services (requisition lifecycle, purchase orders) own the
  transaction boundary of each public operation: they commit on success
  and roll back on failure, then run best-effort side effects in their
  own transactions.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller.  Reads go
        through the session; writes are flushed.  Whether the service
        commits is stated in each subclass docstring.
    """

    def __init__(self, session: Session):
        self.session = session
