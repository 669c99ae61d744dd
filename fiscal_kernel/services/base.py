"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and unit-of-work handling for every
    service that reads or writes through the storage port.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: a service method that receives a unit of work
      joins the caller's transaction and never commits it.  Only when called
      without one does the service open (and own) a transaction.

Failure modes:
    - ConcurrencyConflictError from the store when the owned transaction
      loses a race.  Never retried here.
"""

from abc import ABC
from collections.abc import Iterator
from contextlib import contextmanager

from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.storage.protocol import FiscalStore, FiscalUnitOfWork


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a FiscalStore and an optional Clock.  Every public method
        takes an optional ``uow`` so several services can share one
        transaction.
    """

    def __init__(self, store: FiscalStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    @property
    def clock(self) -> Clock:
        return self._clock

    @contextmanager
    def _unit(self, uow: FiscalUnitOfWork | None = None) -> Iterator[FiscalUnitOfWork]:
        """Join ``uow`` if given, otherwise run in a fresh transaction."""
        if uow is not None:
            yield uow
            return
        with self._store.transaction() as owned:
            yield owned
