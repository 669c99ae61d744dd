"""
Storage port -- the single persistence collaborator of the fiscal kernel.

Responsibility:
    Declares the operations every backend must satisfy.  The fiscal rules
    (gating, numbering, quota, window, vault) are implemented once in
    services/ against this port; backends differ only in how they meet it.

Contract:
    ``FiscalStore.transaction()`` yields a ``FiscalUnitOfWork``.  Everything
    done through that unit of work commits together on normal exit and rolls
    back together on exception.  Writes that must serialize (sequence
    counters, usage rows, document rows) are locked for the rest of the unit
    of work by the ``*_for_update`` / counter reads.

Failure modes:
    - ConcurrencyConflictError when the backend loses a race (lock timeout,
      deadlock, serialization failure).  Nothing is committed.
    - DuplicateDocumentNumberError when a document number already exists.
"""

from contextlib import AbstractContextManager
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from fiscal_kernel.domain.document_number import counter_name
from fiscal_kernel.domain.dtos import (
    AccountUsage,
    AuditEventRecord,
    FiscalDocument,
    FiscalPermit,
    IntegrationCredentials,
)


@runtime_checkable
class FiscalUnitOfWork(Protocol):
    """Operations available inside one transaction."""

    # Fiscal permit

    def get_fiscal_permit(self) -> FiscalPermit | None:
        """Current (non-superseded) permit, or None if never configured."""
        ...

    def save_fiscal_permit(self, permit: FiscalPermit, actor_id: UUID) -> FiscalPermit:
        """Supersede the current permit with ``permit``. Never deletes."""
        ...

    # Sequence counters

    def get_counter(self, name: str) -> int:
        """Locked read of a named counter; 0 if it does not exist yet."""
        ...

    def set_counter(self, name: str, value: int) -> None:
        """Advance a counter previously read with ``get_counter``."""
        ...

    def get_highest_sequence(self, establishment_code: str, point_of_sale_code: str) -> int:
        ...

    def set_highest_sequence(
        self, establishment_code: str, point_of_sale_code: str, value: int
    ) -> None:
        ...

    # Account usage

    def get_account_usage(
        self, account_id: UUID, for_update: bool = False
    ) -> AccountUsage | None:
        ...

    def update_account_usage(self, account_id: UUID, **patch: Any) -> AccountUsage:
        ...

    def create_account_usage(self, usage: AccountUsage) -> AccountUsage:
        ...

    def list_account_usages(self) -> list[AccountUsage]:
        ...

    # Fiscal documents

    def get_fiscal_document(
        self, document_id: UUID, for_update: bool = False
    ) -> FiscalDocument | None:
        ...

    def create_fiscal_document(self, document: FiscalDocument) -> FiscalDocument:
        ...

    def update_fiscal_document(self, document_id: UUID, **patch: Any) -> FiscalDocument:
        ...

    def delete_fiscal_document(self, document_id: UUID) -> bool:
        ...

    def list_fiscal_documents(
        self,
        establishment_code: str | None = None,
        point_of_sale_code: str | None = None,
    ) -> list[FiscalDocument]:
        ...

    # Integration credentials

    def get_integration_credentials(self) -> IntegrationCredentials | None:
        ...

    def save_integration_credentials(
        self, credentials: IntegrationCredentials, actor_id: UUID
    ) -> IntegrationCredentials:
        ...

    def delete_integration_credentials(self) -> bool:
        ...

    # Audit trail

    def append_audit_event(self, event: AuditEventRecord) -> AuditEventRecord:
        ...

    def get_last_audit_event(self) -> AuditEventRecord | None:
        ...

    def list_audit_events(
        self,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
    ) -> list[AuditEventRecord]:
        """Events in ``seq`` order, optionally filtered to one entity."""
        ...


@runtime_checkable
class FiscalStore(Protocol):
    def transaction(self) -> AbstractContextManager[FiscalUnitOfWork]:
        ...


class InvoiceCounterMixin:
    """Maps the per-pair sequence operations onto named counters."""

    def get_highest_sequence(self, establishment_code: str, point_of_sale_code: str) -> int:
        return self.get_counter(counter_name(establishment_code, point_of_sale_code))

    def set_highest_sequence(
        self, establishment_code: str, point_of_sale_code: str, value: int
    ) -> None:
        self.set_counter(counter_name(establishment_code, point_of_sale_code), value)
