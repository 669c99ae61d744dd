"""
Module: fiscal_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain DTOs only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listener).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      validated by AuditorService.
    - seq is unique and monotonically increasing, allocated through the
      ``audit_event`` sequence counter.

Minimum coverage (each action type generates at least one AuditEvent):
    - DOCUMENT_ISSUED, DOCUMENT_EDITED, DOCUMENT_DELETED, MODIFICATION_DENIED
    - PERMIT_CONFIGURED
    - CREDENTIALS_SAVED, CREDENTIALS_DELETED
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import Base, UTCDateTime, UUIDString
from fiscal_kernel.domain.dtos import AuditAction, AuditEventRecord


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "FiscalDocument", "FiscalPermit", "IntegrationCredentials"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    def to_dto(self) -> AuditEventRecord:
        return AuditEventRecord(
            id=self.id,
            seq=self.seq,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            action=AuditAction(self.action),
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
            payload=dict(self.payload or {}),
            payload_hash=self.payload_hash,
            prev_hash=self.prev_hash,
            hash=self.hash,
        )

    @classmethod
    def from_dto(cls, dto: AuditEventRecord) -> "AuditEvent":
        model = cls(
            seq=dto.seq,
            entity_type=dto.entity_type,
            entity_id=dto.entity_id,
            action=dto.action.value,
            actor_id=dto.actor_id,
            occurred_at=dto.occurred_at,
            payload=dto.payload,
            payload_hash=dto.payload_hash,
            prev_hash=dto.prev_hash,
            hash=dto.hash,
        )
        if dto.id is not None:
            model.id = dto.id
        return model
