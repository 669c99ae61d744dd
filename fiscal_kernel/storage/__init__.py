"""Persistence port and its backends."""

from fiscal_kernel.storage.memory import InMemoryFiscalStore, InMemoryUnitOfWork
from fiscal_kernel.storage.protocol import FiscalStore, FiscalUnitOfWork
from fiscal_kernel.storage.sqlalchemy_store import (
    SqlAlchemyFiscalStore,
    SqlAlchemyUnitOfWork,
)

__all__ = [
    "FiscalStore",
    "FiscalUnitOfWork",
    "InMemoryFiscalStore",
    "InMemoryUnitOfWork",
    "SqlAlchemyFiscalStore",
    "SqlAlchemyUnitOfWork",
]
