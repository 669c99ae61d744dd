"""
In-memory FiscalStore.

Responsibility:
    Process-local backend for tests, demos, and single-process deployments.

Concurrency model:
    One re-entrant lock per store is held for the whole unit of work, so
    units of work run strictly one after another.  On exception the state is
    restored from a deep-copy snapshot taken at entry.  This serializes the
    read-then-write cycles on counters and usage rows without row locks.

Non-goals:
    - Sharing state across processes.  Multiple processes each get their own
      numbering; use the SQLAlchemy store for that.
"""

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any
from uuid import UUID, uuid4

from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.domain.dtos import (
    DOCUMENT_IDENTITY_FIELDS,
    AccountUsage,
    AuditEventRecord,
    FiscalDocument,
    FiscalPermit,
    IntegrationCredentials,
)
from fiscal_kernel.exceptions import (
    AccountNotFoundError,
    DocumentNotFoundError,
    DuplicateDocumentNumberError,
    ImmutabilityViolationError,
)
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.storage.protocol import InvoiceCounterMixin

logger = get_logger("storage.memory")


@dataclass
class _State:
    permits: list[FiscalPermit] = field(default_factory=list)
    counters: dict[str, int] = field(default_factory=dict)
    usages: dict[UUID, AccountUsage] = field(default_factory=dict)
    documents: dict[UUID, FiscalDocument] = field(default_factory=dict)
    credentials: IntegrationCredentials | None = None
    audit_events: list[AuditEventRecord] = field(default_factory=list)


class InMemoryUnitOfWork(InvoiceCounterMixin):
    def __init__(self, state: _State, clock: Clock):
        self._state = state
        self._clock = clock

    # Fiscal permit

    def get_fiscal_permit(self) -> FiscalPermit | None:
        for permit in reversed(self._state.permits):
            if permit.superseded_at is None:
                return permit
        return None

    def save_fiscal_permit(self, permit: FiscalPermit, actor_id: UUID) -> FiscalPermit:
        now = self._clock.now()
        self._state.permits = [
            replace(p, superseded_at=now) if p.superseded_at is None else p
            for p in self._state.permits
        ]
        saved = replace(permit, id=uuid4(), superseded_at=None)
        self._state.permits.append(saved)
        return saved

    # Sequence counters

    def get_counter(self, name: str) -> int:
        return self._state.counters.get(name, 0)

    def set_counter(self, name: str, value: int) -> None:
        current = self._state.counters.get(name, 0)
        if value <= current:
            raise ValueError(
                f"Counter {name} may only advance: {current} -> {value}"
            )
        self._state.counters[name] = value

    # Account usage

    def get_account_usage(
        self, account_id: UUID, for_update: bool = False
    ) -> AccountUsage | None:
        return self._state.usages.get(account_id)

    def update_account_usage(self, account_id: UUID, **patch: Any) -> AccountUsage:
        current = self._state.usages.get(account_id)
        if current is None:
            raise AccountNotFoundError(str(account_id))
        updated = replace(current, **patch)
        self._state.usages[account_id] = updated
        return updated

    def create_account_usage(self, usage: AccountUsage) -> AccountUsage:
        if usage.account_id in self._state.usages:
            raise ValueError(f"Usage record already exists for {usage.account_id}")
        self._state.usages[usage.account_id] = usage
        return usage

    def list_account_usages(self) -> list[AccountUsage]:
        return list(self._state.usages.values())

    # Fiscal documents

    def get_fiscal_document(
        self, document_id: UUID, for_update: bool = False
    ) -> FiscalDocument | None:
        return self._state.documents.get(document_id)

    def create_fiscal_document(self, document: FiscalDocument) -> FiscalDocument:
        for existing in self._state.documents.values():
            if existing.document_number == document.document_number:
                raise DuplicateDocumentNumberError(document.document_number)
        self._state.documents[document.id] = document
        return document

    def update_fiscal_document(self, document_id: UUID, **patch: Any) -> FiscalDocument:
        current = self._state.documents.get(document_id)
        if current is None:
            raise DocumentNotFoundError(str(document_id))
        touched = tuple(name for name in DOCUMENT_IDENTITY_FIELDS if name in patch)
        if touched:
            raise ImmutabilityViolationError(
                entity_type="FiscalDocument",
                entity_id=str(document_id),
                reason=f"Identity fields are immutable: {', '.join(touched)}",
            )
        updated = replace(current, **patch)
        self._state.documents[document_id] = updated
        return updated

    def delete_fiscal_document(self, document_id: UUID) -> bool:
        return self._state.documents.pop(document_id, None) is not None

    def list_fiscal_documents(
        self,
        establishment_code: str | None = None,
        point_of_sale_code: str | None = None,
    ) -> list[FiscalDocument]:
        docs = [
            d
            for d in self._state.documents.values()
            if (establishment_code is None or d.establishment_code == establishment_code)
            and (point_of_sale_code is None or d.point_of_sale_code == point_of_sale_code)
        ]
        return sorted(
            docs, key=lambda d: (d.establishment_code, d.point_of_sale_code, d.sequence)
        )

    # Integration credentials

    def get_integration_credentials(self) -> IntegrationCredentials | None:
        return self._state.credentials

    def save_integration_credentials(
        self, credentials: IntegrationCredentials, actor_id: UUID
    ) -> IntegrationCredentials:
        existing = self._state.credentials
        saved = replace(
            credentials,
            id=existing.id if existing is not None else uuid4(),
            updated_at=self._clock.now(),
        )
        self._state.credentials = saved
        return saved

    def delete_integration_credentials(self) -> bool:
        existed = self._state.credentials is not None
        self._state.credentials = None
        return existed

    # Audit trail

    def append_audit_event(self, event: AuditEventRecord) -> AuditEventRecord:
        if any(e.seq == event.seq for e in self._state.audit_events):
            raise ValueError(f"Audit seq {event.seq} already used")
        stored = replace(event, id=event.id or uuid4())
        self._state.audit_events.append(stored)
        return stored

    def get_last_audit_event(self) -> AuditEventRecord | None:
        if not self._state.audit_events:
            return None
        return max(self._state.audit_events, key=lambda e: e.seq)

    def list_audit_events(
        self,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
    ) -> list[AuditEventRecord]:
        events = [
            e
            for e in self._state.audit_events
            if (entity_type is None or e.entity_type == entity_type)
            and (entity_id is None or e.entity_id == entity_id)
        ]
        return sorted(events, key=lambda e: e.seq)


class InMemoryFiscalStore:
    """FiscalStore backed by Python dicts and a single re-entrant lock."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._state = _State()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[InMemoryUnitOfWork]:
        with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                yield InMemoryUnitOfWork(self._state, self._clock)
            except Exception:
                # Restore in place; an enclosing unit of work shares this object.
                vars(self._state).update(vars(snapshot))
                logger.debug("memory_transaction_rolled_back")
                raise
