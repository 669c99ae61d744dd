"""
SQLAlchemy FiscalStore -- PostgreSQL and SQLite backend.

Responsibility:
    Satisfies the storage port over the ORM models in fiscal_kernel.models.
    One Session per unit of work; commit on normal exit, rollback otherwise.
    Returns domain DTOs only; ORM rows never leave this module.

Concurrency model:
    - PostgreSQL: ``SELECT ... FOR UPDATE`` on sequence counters, usage rows,
      and document rows serializes concurrent issuances for the same
      numbering pair or account.
    - SQLite: the engine opens every transaction with BEGIN IMMEDIATE (see
      db.engine), so writers serialize on the database lock.

Failure modes:
    - ConcurrencyConflictError for deadlocks, serialization failures, lock
      timeouts and "database is locked".  The core never retries.
    - DuplicateDocumentNumberError when the unique number constraint trips.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from fiscal_kernel.db.engine import build_engine, create_tables
from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.domain.dtos import (
    AccountUsage,
    AuditEventRecord,
    FiscalDocument,
    FiscalPermit,
    IntegrationCredentials,
)
from fiscal_kernel.exceptions import (
    AccountNotFoundError,
    ConcurrencyConflictError,
    DocumentNotFoundError,
    DuplicateDocumentNumberError,
)
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.models import (
    AccountUsageModel,
    AuditEvent,
    FiscalDocumentModel,
    FiscalPermitModel,
    IntegrationCredentialsModel,
    SequenceCounter,
)
from fiscal_kernel.storage.protocol import InvoiceCounterMixin

logger = get_logger("storage.sqlalchemy")

_TRANSIENT_PGCODES = frozenset({"40001", "40P01", "55P03"})
_TRANSIENT_MARKERS = (
    "deadlock",
    "could not serialize",
    "database is locked",
    "lock timeout",
    "lock not available",
)


def is_transient_conflict(exc: OperationalError) -> bool:
    """Whether a driver error is a lost race the caller may retry."""
    if getattr(exc.orig, "pgcode", None) in _TRANSIENT_PGCODES:
        return True
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


class SqlAlchemyUnitOfWork(InvoiceCounterMixin):
    """Unit of work bound to one Session and its transaction."""

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock
        self._counters: dict[str, SequenceCounter] = {}

    # Fiscal permit

    def _current_permit_row(self, lock: bool = False) -> FiscalPermitModel | None:
        stmt = (
            select(FiscalPermitModel)
            .where(FiscalPermitModel.superseded_at.is_(None))
            .order_by(FiscalPermitModel.created_at.desc())
            .limit(1)
        )
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def get_fiscal_permit(self) -> FiscalPermit | None:
        row = self._current_permit_row()
        return row.to_dto() if row is not None else None

    def save_fiscal_permit(self, permit: FiscalPermit, actor_id: UUID) -> FiscalPermit:
        current = self._current_permit_row(lock=True)
        if current is not None:
            current.superseded_at = self._clock.now()
            current.updated_by_id = actor_id
        row = FiscalPermitModel.from_dto(permit, created_by_id=actor_id)
        self._session.add(row)
        self._session.flush()
        return row.to_dto()

    # Sequence counters

    def _lock_counter(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_counter(self, name: str) -> int:
        counter = self._lock_counter(name)

        if counter is None:
            # First use of this counter.  Another transaction may create it
            # at the same time; the savepoint keeps the rest of our work.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=name, current_value=0)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
            except IntegrityError:
                logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
                savepoint.rollback()
                counter = self._lock_counter(name)
                if counter is None:
                    raise ConcurrencyConflictError(
                        "get_counter", f"counter {name} vanished during creation"
                    )

        self._counters[name] = counter
        return counter.current_value

    def set_counter(self, name: str, value: int) -> None:
        counter = self._counters.get(name)
        if counter is None:
            raise RuntimeError(f"Counter {name} must be read with get_counter() first")
        if value <= counter.current_value:
            raise ValueError(
                f"Counter {name} may only advance: {counter.current_value} -> {value}"
            )
        counter.current_value = value
        self._session.flush()
        logger.debug("sequence_allocated", extra={"sequence_name": name, "value": value})

    # Account usage

    def _usage_row(self, account_id: UUID, for_update: bool) -> AccountUsageModel | None:
        stmt = select(AccountUsageModel).where(AccountUsageModel.account_id == account_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def get_account_usage(
        self, account_id: UUID, for_update: bool = False
    ) -> AccountUsage | None:
        row = self._usage_row(account_id, for_update)
        return row.to_dto() if row is not None else None

    def update_account_usage(self, account_id: UUID, **patch: Any) -> AccountUsage:
        row = self._usage_row(account_id, for_update=True)
        if row is None:
            raise AccountNotFoundError(str(account_id))
        updated = replace(row.to_dto(), **patch)
        row.apply(updated)
        self._session.flush()
        return updated

    def create_account_usage(self, usage: AccountUsage) -> AccountUsage:
        row = AccountUsageModel.from_dto(usage)
        self._session.add(row)
        self._session.flush()
        return row.to_dto()

    def list_account_usages(self) -> list[AccountUsage]:
        rows = self._session.execute(select(AccountUsageModel)).scalars().all()
        return [row.to_dto() for row in rows]

    # Fiscal documents

    def _document_row(self, document_id: UUID, for_update: bool) -> FiscalDocumentModel | None:
        stmt = select(FiscalDocumentModel).where(FiscalDocumentModel.id == document_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def get_fiscal_document(
        self, document_id: UUID, for_update: bool = False
    ) -> FiscalDocument | None:
        row = self._document_row(document_id, for_update)
        return row.to_dto() if row is not None else None

    def create_fiscal_document(self, document: FiscalDocument) -> FiscalDocument:
        row = FiscalDocumentModel.from_dto(document)
        self._session.add(row)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise DuplicateDocumentNumberError(document.document_number) from exc
        return row.to_dto()

    def update_fiscal_document(self, document_id: UUID, **patch: Any) -> FiscalDocument:
        row = self._document_row(document_id, for_update=True)
        if row is None:
            raise DocumentNotFoundError(str(document_id))
        for name, value in patch.items():
            setattr(row, name, value)
        # ImmutabilityViolationError from the ORM listener surfaces here.
        self._session.flush()
        return row.to_dto()

    def delete_fiscal_document(self, document_id: UUID) -> bool:
        row = self._document_row(document_id, for_update=True)
        if row is None:
            return False
        self._session.delete(row)
        self._session.flush()
        return True

    def list_fiscal_documents(
        self,
        establishment_code: str | None = None,
        point_of_sale_code: str | None = None,
    ) -> list[FiscalDocument]:
        stmt = select(FiscalDocumentModel)
        if establishment_code is not None:
            stmt = stmt.where(FiscalDocumentModel.establishment_code == establishment_code)
        if point_of_sale_code is not None:
            stmt = stmt.where(FiscalDocumentModel.point_of_sale_code == point_of_sale_code)
        stmt = stmt.order_by(
            FiscalDocumentModel.establishment_code,
            FiscalDocumentModel.point_of_sale_code,
            FiscalDocumentModel.sequence,
        )
        return [row.to_dto() for row in self._session.execute(stmt).scalars().all()]

    # Integration credentials

    def _credentials_row(self, lock: bool = False) -> IntegrationCredentialsModel | None:
        stmt = select(IntegrationCredentialsModel).limit(1)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def get_integration_credentials(self) -> IntegrationCredentials | None:
        row = self._credentials_row()
        return row.to_dto() if row is not None else None

    def save_integration_credentials(
        self, credentials: IntegrationCredentials, actor_id: UUID
    ) -> IntegrationCredentials:
        row = self._credentials_row(lock=True)
        if row is None:
            row = IntegrationCredentialsModel(created_by_id=actor_id)
            self._session.add(row)
        else:
            row.updated_by_id = actor_id
        row.apply(credentials)
        self._session.flush()
        self._session.refresh(row)
        return row.to_dto()

    def delete_integration_credentials(self) -> bool:
        row = self._credentials_row(lock=True)
        if row is None:
            return False
        self._session.delete(row)
        self._session.flush()
        return True

    # Audit trail

    def append_audit_event(self, event: AuditEventRecord) -> AuditEventRecord:
        row = AuditEvent.from_dto(event)
        self._session.add(row)
        self._session.flush()
        return row.to_dto()

    def get_last_audit_event(self) -> AuditEventRecord | None:
        row = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_audit_events(
        self,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
    ) -> list[AuditEventRecord]:
        stmt = select(AuditEvent)
        if entity_type is not None:
            stmt = stmt.where(AuditEvent.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditEvent.entity_id == entity_id)
        stmt = stmt.order_by(AuditEvent.seq)
        return [row.to_dto() for row in self._session.execute(stmt).scalars().all()]


class SqlAlchemyFiscalStore:
    """FiscalStore over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    @classmethod
    def from_url(
        cls, database_url: str, clock: Clock | None = None, **engine_kwargs
    ) -> "SqlAlchemyFiscalStore":
        """Build an engine, create the schema, and wrap it in a store."""
        engine = build_engine(database_url, **engine_kwargs)
        create_tables(engine)
        return cls(sessionmaker(bind=engine, expire_on_commit=False), clock=clock)

    @property
    def engine(self):
        return self._session_factory.kw["bind"]

    @contextmanager
    def transaction(self) -> Iterator[SqlAlchemyUnitOfWork]:
        session = self._session_factory()
        try:
            yield SqlAlchemyUnitOfWork(session, self._clock)
            session.commit()
        except OperationalError as exc:
            session.rollback()
            if is_transient_conflict(exc):
                logger.warning(
                    "transaction_conflict",
                    extra={"reason": str(exc.orig)},
                )
                raise ConcurrencyConflictError("transaction", str(exc.orig)) from exc
            raise
        except Exception:
            session.rollback()
            logger.debug("transaction_rolled_back")
            raise
        finally:
            session.close()
