"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and transaction-handling contract for
    every service in the kernel layer.  Services receive a session FACTORY
    for one store and open one short transaction per operation through
    ``_transaction()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - One store per service.  A service never opens a session on the other
      store; cross-store work (quota increments after an inventory write)
      goes through a second service and is never in the same transaction.
    - Short transactions.  Each public operation commits its own unit of
      work, so a multi-line checkout commits each line independently.
    - Helpers named ``_..._in(session, ...)`` only flush; the operation that
      opened the transaction owns commit and rollback.

Failure modes:
    - StorageUnavailableError when the store times out or drops the
      connection (translated in ``session_scope``).
"""

from __future__ import annotations

from abc import ABC
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session, sessionmaker

from pantry_kernel.db.engine import INVENTORY_STORE, session_scope
from pantry_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a ``sessionmaker`` bound to one store and a Clock.  All
        timestamps come from the clock, never from ``datetime.now()``.

    Non-goals:
        - Does NOT provide query-only read paths for the presentation
          layer; those belong in ``pantry_kernel/selectors/``.
    """

    store: str = INVENTORY_STORE

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    @contextmanager
    def _transaction(self, operation: str) -> Generator[Session, None, None]:
        """Open a session on this service's store, commit on success."""
        with session_scope(self._session_factory, store=self.store, operation=operation) as session:
            yield session
