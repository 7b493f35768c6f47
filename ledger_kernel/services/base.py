"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract for every service
    that writes.  Services receive a SQLAlchemy ``Session`` and persist with
    ``session.flush()``, never ``session.commit()``.

Architecture position:
    Kernel > Services.  LedgerService is the single owner of transaction
    boundaries; every other service runs inside the transaction it opened.

Failure modes:
    - A subclass that commits on its own breaks the all-or-nothing
      guarantee of post() and void().
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for write services.

    Guarantees:
        - Never calls ``session.commit()`` or ``session.rollback()``.

    Non-goals:
        - Read-only queries belong in ``ledger_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
