"""
Module: fiscal_kernel.models.sequence_counter
Responsibility: Named monotonic counters.  One row per invoice numbering pair
    (``invoice:EEE-PPP``) plus the global ``audit_event`` counter.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - The locked counter row is the sole source of truth for the next value.
      The aggregate-max-plus-one pattern over issued documents is forbidden.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Row-level locking (``SELECT ... FOR UPDATE``) ensures monotonicity under
    concurrency on PostgreSQL; on SQLite, BEGIN IMMEDIATE serializes writers.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
