"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable records that cross the persistence boundary:
    FiscalPermit, AccountUsage, FiscalDocument, IntegrationCredentials (in
    their stored, sealed form), the safe read view of those credentials, and
    AuditEventRecord.  Storage adapters convert their rows into these types;
    services never see ORM entities.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - ValueError on AccountUsage with a non-positive limit or negative count.
    - ValueError on FiscalDocument with a non-positive sequence.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from fiscal_kernel.utils.hashing import to_json_safe


class ActorRole(str, Enum):
    """Roles known to the modification window."""

    ADMIN = "admin"
    USER = "user"
    READONLY = "readonly"


class SubscriptionType(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class OperationMode(str, Enum):
    """Tax-authority integration environment."""

    TESTING = "testing"
    PRODUCTION = "production"


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: Every member represents one class of compliance event that
    MUST be recorded in the audit chain.
    """

    DOCUMENT_ISSUED = "document_issued"
    DOCUMENT_EDITED = "document_edited"
    DOCUMENT_DELETED = "document_deleted"
    MODIFICATION_DENIED = "modification_denied"

    PERMIT_CONFIGURED = "permit_configured"

    CREDENTIALS_SAVED = "credentials_saved"
    CREDENTIALS_DELETED = "credentials_deleted"


@dataclass(frozen=True)
class FiscalPermit:
    """
    Timbrado as configured in the company profile.

    Every field is optional at this level because legacy profiles may be
    incomplete; FiscalPermitValidator decides what an incomplete permit
    means for issuance.
    """

    permit_number: str | None
    valid_from: date | None
    valid_to: date | None
    establishment_code: str | None
    point_of_sale_code: str | None
    ruc: str | None = None
    id: UUID | None = None
    superseded_at: datetime | None = None


@dataclass(frozen=True)
class AccountUsage:
    """
    Per-account monthly invoicing counter.

    Guarantees:
        - monthly_limit > 0
        - current_period_count >= 0
    """

    account_id: UUID
    monthly_limit: int
    current_period_count: int
    period_started_at: datetime
    account_expires_at: datetime | None = None
    active: bool = True
    blocked: bool = False
    subscription_type: SubscriptionType = SubscriptionType.FREE

    def __post_init__(self) -> None:
        if self.monthly_limit <= 0:
            raise ValueError("monthly_limit must be positive")
        if self.current_period_count < 0:
            raise ValueError("current_period_count must be non-negative")

    @property
    def remaining(self) -> int:
        return max(0, self.monthly_limit - self.current_period_count)


# Fields fixed at issuance; the modification path may only touch ``details``.
DOCUMENT_IDENTITY_FIELDS: tuple[str, ...] = (
    "id",
    "document_number",
    "establishment_code",
    "point_of_sale_code",
    "sequence",
    "permit_number_used",
    "issued_at",
    "issued_by",
)


@dataclass(frozen=True)
class FiscalDocument:
    """
    An issued sale / invoice.

    ``issued_by`` is None on records written before creator attribution
    existed; usage release skips those.
    """

    id: UUID
    document_number: str
    establishment_code: str
    point_of_sale_code: str
    sequence: int
    permit_number_used: str
    issued_at: datetime
    issued_by: UUID | None
    details: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.sequence <= 0:
            raise ValueError("sequence must be positive")

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy of the full entity for audit payloads."""
        return to_json_safe(asdict(self))


@dataclass(frozen=True)
class IntegrationCredentials:
    """
    Tax-authority integration record as persisted.

    ``auth_token``, ``certificate_blob`` and ``certificate_password`` hold
    vault envelopes (or legacy plaintext written before encryption existed).
    """

    endpoint_url: str
    auth_token: str
    certificate_blob: str | None = None
    certificate_password: str | None = None
    mode: OperationMode = OperationMode.TESTING
    active: bool = False
    last_test_at: datetime | None = None
    last_test_status: str | None = None
    last_test_error: str | None = None
    id: UUID | None = None
    updated_at: datetime | None = None


def _is_set(value: str | None) -> bool:
    return bool(value) and value.strip() != ""


@dataclass(frozen=True)
class SafeIntegrationCredentials:
    """Read view of the integration record. Never carries secret material."""

    endpoint_url: str
    mode: OperationMode
    active: bool
    has_auth_token: bool
    has_certificate: bool
    has_certificate_password: bool
    last_test_at: datetime | None = None
    last_test_status: str | None = None
    last_test_error: str | None = None
    id: UUID | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_stored(cls, stored: IntegrationCredentials) -> SafeIntegrationCredentials:
        return cls(
            endpoint_url=stored.endpoint_url,
            mode=stored.mode,
            active=stored.active,
            has_auth_token=_is_set(stored.auth_token),
            has_certificate=_is_set(stored.certificate_blob),
            has_certificate_password=_is_set(stored.certificate_password),
            last_test_at=stored.last_test_at,
            last_test_status=stored.last_test_status,
            last_test_error=stored.last_test_error,
            id=stored.id,
            updated_at=stored.updated_at,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "endpointUrl": self.endpoint_url,
            "operationMode": self.mode.value,
            "isActive": self.active,
            "hasAuthToken": self.has_auth_token,
            "hasCertificate": self.has_certificate,
            "hasCertificatePassword": self.has_certificate_password,
            "lastConnectionTest": (
                self.last_test_at.isoformat() if self.last_test_at else None
            ),
            "lastConnectionStatus": self.last_test_status,
            "lastConnectionError": self.last_test_error,
        }


@dataclass(frozen=True)
class AuditEventRecord:
    """One link of the append-only audit hash chain."""

    seq: int
    entity_type: str
    entity_id: UUID
    action: AuditAction
    actor_id: UUID
    occurred_at: datetime
    payload: dict[str, Any]
    payload_hash: str
    prev_hash: str | None
    hash: str
    id: UUID | None = None

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
