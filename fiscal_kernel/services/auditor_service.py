"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every compliance
    relevant state change: document issuance, edits, deletes, denied
    modification attempts, permit configuration, and credential changes.
    Provides chain validation for tamper detection and trace queries for
    forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by IssuanceService,
    DocumentModificationService, FiscalPermitService and
    IntegrationCredentialsService inside their units of work.

Invariants enforced:
    - seq allocated through SequenceService (locked counter, never max+1).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - Append-only: events are never modified or deleted.
    - Payloads carry no secret values (credential events list field names).

Failure modes:
    - AuditChainBrokenError: recomputed payload hash or event hash does not
      match, or prev_hash does not match the predecessor's hash.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from fiscal_kernel.domain.dtos import AuditAction, AuditEventRecord, FiscalDocument
from fiscal_kernel.exceptions import AuditChainBrokenError
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.services.base import BaseService
from fiscal_kernel.services.sequence_service import SequenceService
from fiscal_kernel.storage.protocol import FiscalUnitOfWork
from fiscal_kernel.utils.hashing import event_chain_hash, hash_payload, to_json_safe

logger = get_logger("services.auditor")

DOCUMENT_ENTITY = "FiscalDocument"
PERMIT_ENTITY = "FiscalPermit"
CREDENTIALS_ENTITY = "IntegrationCredentials"


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """
    Complete audit trace for an entity.

    Contains all audit events in chronological order.
    """

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def first_action(self) -> AuditAction | None:
        return self.entries[0].action if self.entries else None

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(entry.action for entry in self.entries)


class AuditorService(BaseService):
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT interpret or act on audit events (that is forensic tooling).
    """

    def _create_audit_event(
        self,
        uow: FiscalUnitOfWork,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEventRecord:
        """
        Create a new audit event with hash chain linkage.

        Postconditions:
            - The event is appended inside ``uow`` with the next ``seq`` and
              ``hash == H(entity_type, entity_id, action, payload_hash,
              prev_hash)``.
        """
        # Counter lock first: it serializes writers, so the last hash read
        # below cannot change underneath us.
        seq = SequenceService(uow).next_value(SequenceService.AUDIT_EVENT)

        last = uow.get_last_audit_event()
        prev_hash = last.hash if last is not None else None

        payload_data = to_json_safe(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        event_hash = event_chain_hash(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        record = uow.append_audit_event(
            AuditEventRecord(
                seq=seq,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                payload=payload_data,
                payload_hash=computed_payload_hash,
                prev_hash=prev_hash,
                hash=event_hash,
            )
        )

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return record

    # Domain-specific recording methods

    def record_document_issued(
        self,
        uow: FiscalUnitOfWork,
        document: FiscalDocument,
        actor_id: UUID,
        usage_count: int,
        actor_role: str | None = None,
    ) -> AuditEventRecord:
        return self._create_audit_event(
            uow,
            entity_type=DOCUMENT_ENTITY,
            entity_id=document.id,
            action=AuditAction.DOCUMENT_ISSUED,
            actor_id=actor_id,
            payload={
                "document_number": document.document_number,
                "permit_number_used": document.permit_number_used,
                "issued_at": document.issued_at,
                "usage_count": usage_count,
                "actor_role": actor_role,
            },
        )

    def record_document_edited(
        self,
        uow: FiscalUnitOfWork,
        before: FiscalDocument,
        changes: dict[str, Any],
        actor_id: UUID,
        actor_role: str,
        hours_elapsed: float,
    ) -> AuditEventRecord:
        """Record an edit with the pre-mutation snapshot."""
        return self._create_audit_event(
            uow,
            entity_type=DOCUMENT_ENTITY,
            entity_id=before.id,
            action=AuditAction.DOCUMENT_EDITED,
            actor_id=actor_id,
            payload={
                "actor_role": actor_role,
                "hours_elapsed": round(hours_elapsed, 4),
                "before": before.snapshot(),
                "changes": changes,
            },
        )

    def record_document_deleted(
        self,
        uow: FiscalUnitOfWork,
        document: FiscalDocument,
        actor_id: UUID,
        actor_role: str,
        hours_elapsed: float,
    ) -> AuditEventRecord:
        """Record a delete with the full deleted entity."""
        return self._create_audit_event(
            uow,
            entity_type=DOCUMENT_ENTITY,
            entity_id=document.id,
            action=AuditAction.DOCUMENT_DELETED,
            actor_id=actor_id,
            payload={
                "actor_role": actor_role,
                "hours_elapsed": round(hours_elapsed, 4),
                "document": document.snapshot(),
            },
        )

    def record_modification_denied(
        self,
        uow: FiscalUnitOfWork,
        document: FiscalDocument,
        operation: str,
        actor_id: UUID,
        actor_role: str,
        reason: str,
        hours_elapsed: float,
        max_hours: int,
    ) -> AuditEventRecord:
        return self._create_audit_event(
            uow,
            entity_type=DOCUMENT_ENTITY,
            entity_id=document.id,
            action=AuditAction.MODIFICATION_DENIED,
            actor_id=actor_id,
            payload={
                "operation": operation,
                "actor_role": actor_role,
                "reason": reason,
                "hours_elapsed": round(hours_elapsed, 4),
                "max_hours": max_hours,
                "document_number": document.document_number,
            },
        )

    def record_permit_configured(
        self,
        uow: FiscalUnitOfWork,
        permit_id: UUID,
        permit_payload: dict[str, Any],
        actor_id: UUID,
        superseded_id: UUID | None,
    ) -> AuditEventRecord:
        return self._create_audit_event(
            uow,
            entity_type=PERMIT_ENTITY,
            entity_id=permit_id,
            action=AuditAction.PERMIT_CONFIGURED,
            actor_id=actor_id,
            payload={"permit": permit_payload, "superseded_id": superseded_id},
        )

    def record_credentials_saved(
        self,
        uow: FiscalUnitOfWork,
        credentials_id: UUID,
        changed_fields: tuple[str, ...],
        actor_id: UUID,
    ) -> AuditEventRecord:
        return self._create_audit_event(
            uow,
            entity_type=CREDENTIALS_ENTITY,
            entity_id=credentials_id,
            action=AuditAction.CREDENTIALS_SAVED,
            actor_id=actor_id,
            payload={"changed_fields": sorted(changed_fields)},
        )

    def record_credentials_deleted(
        self,
        uow: FiscalUnitOfWork,
        credentials_id: UUID,
        actor_id: UUID,
    ) -> AuditEventRecord:
        return self._create_audit_event(
            uow,
            entity_type=CREDENTIALS_ENTITY,
            entity_id=credentials_id,
            action=AuditAction.CREDENTIALS_DELETED,
            actor_id=actor_id,
        )

    # Chain validation

    def validate_chain(self, uow: FiscalUnitOfWork | None = None) -> bool:
        """
        Validate the entire audit chain.

        Postconditions:
            - Returns True only if every event's payload hash and event hash
              match the recomputed values and every prev_hash matches its
              predecessor's hash.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        with self._unit(uow) as unit:
            events = unit.list_audit_events()

        prev: AuditEventRecord | None = None
        for event in events:
            expected_payload_hash = hash_payload(event.payload)
            if event.payload_hash != expected_payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id), expected_payload_hash, event.payload_hash
                )

            expected_prev = prev.hash if prev is not None else None
            if event.prev_hash != expected_prev:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id), expected_prev or "None", event.prev_hash or "None"
                )

            expected_hash = event_chain_hash(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action.value,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)

            prev = event

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    # Trace and query methods

    def get_trace(
        self,
        entity_type: str,
        entity_id: UUID,
        uow: FiscalUnitOfWork | None = None,
    ) -> AuditTrace:
        """Complete audit trace for an entity, in chronological order."""
        with self._unit(uow) as unit:
            events = unit.list_audit_events(entity_type=entity_type, entity_id=entity_id)

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=event.seq,
                    action=event.action,
                    occurred_at=event.occurred_at,
                    actor_id=event.actor_id,
                    payload=event.payload,
                    hash=event.hash,
                )
                for event in events
            ),
        )
