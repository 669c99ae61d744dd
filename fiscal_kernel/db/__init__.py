"""Database layer - engine, declarative base, column types, immutability listeners."""

from fiscal_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from fiscal_kernel.db.engine import build_engine, create_tables, drop_tables

__all__ = [
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "build_engine",
    "create_tables",
    "drop_tables",
]
