"""
Module: fiscal_kernel.db.base
Responsibility: declarative base and column types shared by the fiscal ORM
    models.
Architecture position: Kernel > DB.  Lowest-level import target of the
    models; MUST NOT import from models/, services/ or storage/.

Invariants enforced:
    - Every row has a uuid4 primary key stored as String(36), so the same
      schema runs on SQLite and PostgreSQL.
    - Timestamps come back timezone-aware in UTC.  SQLite drops the offset
      on storage; UTCDateTime restores it, so modification-window and
      quota-rollover arithmetic never mixes naive and aware values.
    - Configuration rows (permits, credentials) record who created and who
      last changed them.

Failure modes:
    - ValueError from UTCDateTime if a naive datetime is bound.
"""

from datetime import date, datetime, timezone
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID in, UUID out; a 36-character string in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """Aware datetimes only; naive values read from SQLite are taken as UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime bound to UTCDateTime column: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    # BigInteger for int: invoice sequences and audit seq only grow.
    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        date: Date(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds created/updated timestamps and the acting administrator."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
