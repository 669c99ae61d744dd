"""
Module: fiscal_kernel.db.engine
Responsibility: build SQLAlchemy engines for the fiscal store and create or
    drop its schema.  The single point of database connection configuration.
Architecture position: Kernel > DB.  Imported by the SQLAlchemy storage
    adapter only.

Invariants enforced:
    - PostgreSQL: READ COMMITTED with explicit row-level locking
      (SELECT ... FOR UPDATE) on sequence counters and usage rows.
    - SQLite: every transaction is opened with BEGIN IMMEDIATE, taking the
      database write lock up front, so concurrent writers serialize instead of
      interleaving read-then-write cycles.  SQLite ignores FOR UPDATE.
    - Schema creation always registers the ORM immutability listeners.

Failure modes:
    - OperationalError("database is locked") on SQLite when the busy timeout
      elapses; the storage adapter maps it to ConcurrencyConflictError.
"""

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import QueuePool, StaticPool

from fiscal_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def _install_sqlite_immediate_begin(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _take_over_transactions(dbapi_connection, connection_record):
        # pysqlite would emit its own deferred BEGIN.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    sqlite_busy_timeout: float = 30.0,
    **pool_options: Any,
) -> Engine:
    """
    Engine for a PostgreSQL or SQLite URL.

    In-memory SQLite (``sqlite://`` or ``:memory:``) gets a StaticPool so
    every session shares the one connection that holds the schema.
    ``pool_options`` (pool_size, max_overflow, ...) apply to PostgreSQL only.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        sqlite_kwargs: dict[str, Any] = {
            "echo": echo,
            "connect_args": {"check_same_thread": False, "timeout": sqlite_busy_timeout},
        }
        if url.database in (None, "", ":memory:"):
            sqlite_kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **sqlite_kwargs)
        _install_sqlite_immediate_begin(engine)
    else:
        options = {
            "pool_size": 20,
            "max_overflow": 10,
            "pool_timeout": 30,
            "pool_recycle": 1800,
            **pool_options,
        }
        engine = create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
            **options,
        )

    logger.info("engine_built", extra={"dialect": engine.dialect.name, "echo": echo})
    return engine


def create_tables(engine: Engine) -> None:
    """Create all fiscal tables and register the ORM immutability listeners."""
    from fiscal_kernel.db.base import Base
    from fiscal_kernel.db.immutability import register_immutability_listeners
    import fiscal_kernel.models  # noqa: F401  (populates Base.metadata)

    Base.metadata.create_all(engine)
    register_immutability_listeners()


def drop_tables(engine: Engine) -> None:
    """Drop all fiscal tables.  Tests only."""
    from fiscal_kernel.db.base import Base
    import fiscal_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
