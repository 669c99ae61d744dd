"""
DocumentModificationService -- edits and deletes of issued documents.

Responsibility:
    The only path that mutates a FiscalDocument after issuance.  Every call
    goes through ModificationWindowGuard and every call leaves an audit
    event, whether the mutation was applied or denied.

Flow:
    edit / delete(document_id, actor_id, actor_role, ...)
      1. Lock the document row (DocumentNotFoundError if missing)
      2. ModificationWindowGuard.authorize(document, role, now)
      3a. Denied:  audit MODIFICATION_DENIED, return DENIED with the
                   typed FiscalComplianceError.  The denial audit commits.
      3b. Edit:    only ``details`` may change; audit DOCUMENT_EDITED with
                   the pre-mutation snapshot, then apply.
      3b. Delete:  audit DOCUMENT_DELETED with the full entity, delete,
                   then give the usage back (UsageQuotaTracker).

Invariants enforced:
    - Identity fields (number, codes, sequence, permit, issuance time and
      issuer) are never changed.  Asking to change them raises
      ImmutableFieldError and nothing is written.  ``details`` that is not
      a mapping raises InvalidDocumentChangesError, also before any write.
    - The permit is not re-checked here, so an administrator can still
      correct a document after the permit expired.
    - Concurrent edit and delete of one document serialize on the row lock.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from fiscal_kernel.domain.dtos import DOCUMENT_IDENTITY_FIELDS, ActorRole, FiscalDocument
from fiscal_kernel.domain.modification_window import ModificationWindowGuard, WindowDecision
from fiscal_kernel.exceptions import (
    DocumentNotFoundError,
    FiscalComplianceError,
    ImmutableFieldError,
    InvalidDocumentChangesError,
)
from fiscal_kernel.logging_config import LogContext, get_logger
from fiscal_kernel.services.auditor_service import AuditorService
from fiscal_kernel.services.base import BaseService
from fiscal_kernel.services.usage_quota_tracker import UsageQuotaTracker
from fiscal_kernel.storage.protocol import FiscalUnitOfWork

logger = get_logger("services.document_modification")

EDITABLE_FIELDS = frozenset({"details"})


class ModificationStatus(str, Enum):
    EDITED = "edited"
    DELETED = "deleted"
    DENIED = "denied"


@dataclass(frozen=True)
class ModificationResult:
    status: ModificationStatus
    document: FiscalDocument
    decision: WindowDecision
    rejection: FiscalComplianceError | None = None
    released_usage_count: int | None = None

    @property
    def is_success(self) -> bool:
        return self.status != ModificationStatus.DENIED

    def unwrap(self) -> FiscalDocument:
        if self.rejection is not None:
            raise self.rejection
        return self.document


class DocumentModificationService(BaseService):
    def __init__(
        self,
        store,
        guard: ModificationWindowGuard,
        quota: UsageQuotaTracker,
        auditor: AuditorService,
        clock=None,
    ):
        super().__init__(store, clock)
        self._guard = guard
        self._quota = quota
        self._auditor = auditor

    @staticmethod
    def _role_value(actor_role: ActorRole | str) -> str:
        return actor_role.value if isinstance(actor_role, ActorRole) else str(actor_role)

    def _locked_document(self, unit: FiscalUnitOfWork, document_id: UUID) -> FiscalDocument:
        document = unit.get_fiscal_document(document_id, for_update=True)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def _deny(
        self,
        unit: FiscalUnitOfWork,
        operation: str,
        document: FiscalDocument,
        decision: WindowDecision,
        actor_id: UUID,
    ) -> ModificationResult:
        violation = decision.to_violation()
        self._auditor.record_modification_denied(
            unit,
            document,
            operation=operation,
            actor_id=actor_id,
            actor_role=decision.actor_role or "",
            reason=decision.reason.value,
            hours_elapsed=decision.hours_elapsed,
            max_hours=decision.max_hours,
        )
        logger.warning(
            "document_modification_denied",
            extra={
                "operation": operation,
                "reason": decision.reason.value,
                "hours_elapsed": round(decision.hours_elapsed, 2),
                "actor_role": decision.actor_role,
            },
        )
        return ModificationResult(
            status=ModificationStatus.DENIED,
            document=document,
            decision=decision,
            rejection=violation,
        )

    def edit(
        self,
        document_id: UUID,
        actor_id: UUID,
        actor_role: ActorRole | str,
        changes: dict[str, Any],
        uow: FiscalUnitOfWork | None = None,
    ) -> ModificationResult:
        """
        Apply ``changes`` to an issued document.

        ``changes["details"]`` is merged into the stored details; any other
        key raises ImmutableFieldError.
        """
        role = self._role_value(actor_role)
        with LogContext.bind(actor_id=str(actor_id), document_id=str(document_id)):
            with self._unit(uow) as unit:
                document = self._locked_document(unit, document_id)
                now = self._clock.now()
                decision = self._guard.authorize(document, role, now)
                if not decision.allowed:
                    return self._deny(unit, "edit", document, decision, actor_id)

                forbidden = tuple(sorted(set(changes) - EDITABLE_FIELDS))
                if forbidden:
                    identity = tuple(f for f in forbidden if f in DOCUMENT_IDENTITY_FIELDS)
                    raise ImmutableFieldError(str(document_id), identity or forbidden)

                edits = changes.get("details", {})
                if not isinstance(edits, Mapping):
                    raise InvalidDocumentChangesError(str(document_id), type(edits).__name__)
                new_details = {**document.details, **edits}
                self._auditor.record_document_edited(
                    unit,
                    before=document,
                    changes=changes,
                    actor_id=actor_id,
                    actor_role=role,
                    hours_elapsed=decision.hours_elapsed,
                )
                updated = unit.update_fiscal_document(
                    document_id, details=new_details, updated_at=now
                )

            logger.info(
                "document_edited",
                extra={
                    "document_number": updated.document_number,
                    "fields": sorted(edits),
                },
            )
            return ModificationResult(
                status=ModificationStatus.EDITED, document=updated, decision=decision
            )

    def delete(
        self,
        document_id: UUID,
        actor_id: UUID,
        actor_role: ActorRole | str,
        uow: FiscalUnitOfWork | None = None,
    ) -> ModificationResult:
        """Delete an issued document and release the usage it consumed."""
        role = self._role_value(actor_role)
        with LogContext.bind(actor_id=str(actor_id), document_id=str(document_id)):
            with self._unit(uow) as unit:
                document = self._locked_document(unit, document_id)
                decision = self._guard.authorize(document, role, self._clock.now())
                if not decision.allowed:
                    return self._deny(unit, "delete", document, decision, actor_id)

                self._auditor.record_document_deleted(
                    unit,
                    document,
                    actor_id=actor_id,
                    actor_role=role,
                    hours_elapsed=decision.hours_elapsed,
                )
                unit.delete_fiscal_document(document_id)
                released = self._quota.release_for_document(document, uow=unit)

            logger.info(
                "document_deleted",
                extra={
                    "document_number": document.document_number,
                    "usage_released": released is not None,
                },
            )
            return ModificationResult(
                status=ModificationStatus.DELETED,
                document=document,
                decision=decision,
                released_usage_count=released,
            )
