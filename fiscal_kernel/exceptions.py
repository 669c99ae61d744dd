"""
Typed Exception Hierarchy for the Fiscal Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Invoicing clients render specific guidance for each refusal: renew the
timbrado, upgrade the plan, ask an administrator.  Parsing message strings
for that is fragile, and the reference messages are in Spanish.  So:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)
  4. Policy violations render the stable JSON payload clients consume

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FiscalKernelError (base)
    |
    +-- ConfigurationError
    |   +-- MasterKeyError
    |   +-- PermitConfigurationError
    |   +-- CredentialsValidationError
    |
    +-- PolicyViolationError
    |   +-- UsageLimitExceededError
    |   +-- PermitInvalidError
    |   +-- FiscalComplianceError
    |       +-- ModificationWindowClosedError
    |       +-- InsufficientRoleError
    |
    +-- NotFoundError
    |   +-- AccountNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- CredentialsNotFoundError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |   +-- ImmutableFieldError
    |   +-- InvalidDocumentChangesError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |       +-- DuplicateDocumentNumberError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|-------------------------------------
Configuration   | MASTER_KEY_MISSING            | No key where one is required
                | MASTER_KEY_INVALID            | Key shorter than the minimum
                | PERMIT_CONFIGURATION_INVALID  | Bad timbrado dates / codes / RUC
                | CREDENTIALS_INVALID           | Bad endpoint URL, missing token
----------------|-------------------------------|-------------------------------------
Policy          | USAGE_LIMIT_EXCEEDED          | Account gate or monthly quota
                | TIMBRADO_INVALID              | Permit missing, incomplete, expired
                | FISCAL_COMPLIANCE_VIOLATION   | Window closed or role insufficient
----------------|-------------------------------|-------------------------------------
Not found       | ACCOUNT_NOT_FOUND             | No usage record for the account
                | DOCUMENT_NOT_FOUND            | Fiscal document id unknown
                | CREDENTIALS_NOT_FOUND         | Integration not configured
----------------|-------------------------------|-------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | ORM flush updates an audit row, etc.
                | IMMUTABLE_FIELD               | Edit touches a document identity field
                | INVALID_DOCUMENT_CHANGES      | Edit "details" is not a mapping
----------------|-------------------------------|-------------------------------------
Concurrency     | CONCURRENCY_CONFLICT          | Lock contention / serialization failure
                | DUPLICATE_DOCUMENT_NUMBER     | Unique number constraint tripped
----------------|-------------------------------|-------------------------------------
Audit           | AUDIT_CHAIN_BROKEN            | Hash chain validation failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Policy violations are expected, user-recoverable outcomes.  Services return
   them inside a result object; ``to_payload()`` renders the API body:

    result = issuance.issue(account_id=..., details=...)
    if not result.is_success:
        return 403, result.rejection.to_payload()

2. Concurrency conflicts are retryable by the CALLER.  The kernel never
   retries on its own:

    except ConcurrencyConflictError:
        retry_with_backoff(...)

3. Cryptographic failures do not raise at all: the vault logs and hands the
   stored value back (legacy plaintext compatibility).

===============================================================================
"""

import math
from typing import Any


class FiscalKernelError(Exception):
    """
    Base exception for all fiscal kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FISCAL_KERNEL_ERROR"


# Configuration errors


class ConfigurationError(FiscalKernelError):
    """Base exception for configuration problems surfaced to the caller."""

    code: str = "CONFIGURATION_ERROR"


class MasterKeyError(ConfigurationError):
    """The vault master key is missing where required, or too short."""

    code: str = "MASTER_KEY_INVALID"

    def __init__(self, reason: str, env_var: str, missing: bool = False):
        self.reason = reason
        self.env_var = env_var
        self.missing = missing
        if missing:
            self.code = "MASTER_KEY_MISSING"
        super().__init__(f"{env_var}: {reason}")


class PermitConfigurationError(ConfigurationError):
    """Timbrado configuration rejected before it was saved."""

    code: str = "PERMIT_CONFIGURATION_INVALID"

    def __init__(self, field: str, details: str):
        self.field = field
        self.details = details
        super().__init__(f"Invalid permit field {field}: {details}")


class CredentialsValidationError(ConfigurationError):
    """Integration credentials update request is malformed."""

    code: str = "CREDENTIALS_INVALID"

    def __init__(self, field: str, details: str):
        self.field = field
        self.details = details
        super().__init__(f"Invalid credentials field {field}: {details}")


# Policy violations


class PolicyViolationError(FiscalKernelError):
    """
    Base for expected, user-recoverable refusals.

    Subclasses render the JSON body clients consume via ``to_payload()``.
    """

    code: str = "POLICY_VIOLATION"
    error: str = "Policy violation"

    def __init__(self, details: str):
        self.details = details
        super().__init__(details)

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.error, "details": self.details, "code": self.code}


class UsageLimitExceededError(PolicyViolationError):
    """Account gate failed: inactive, blocked, expired, or quota reached."""

    code: str = "USAGE_LIMIT_EXCEEDED"
    error: str = "Usage limit exceeded"

    def __init__(
        self,
        details: str,
        reason: str,
        current_usage: int | None = None,
        limit: int | None = None,
        days_until_reset: int | None = None,
        days_until_expiration: int | None = None,
    ):
        self.reason = reason
        self.current_usage = current_usage
        self.limit = limit
        self.days_until_reset = days_until_reset
        self.days_until_expiration = days_until_expiration
        super().__init__(details)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update(
            {
                "currentUsage": self.current_usage,
                "limit": self.limit,
                "daysUntilReset": self.days_until_reset,
            }
        )
        if self.days_until_expiration is not None:
            payload["daysUntilExpiration"] = self.days_until_expiration
        return payload


class PermitInvalidError(PolicyViolationError):
    """Issuance blocked by a missing, incomplete, or expired timbrado."""

    code: str = "TIMBRADO_INVALID"
    error: str = "Operación de facturación bloqueada"

    def __init__(self, details: str, days_left: int | None = None):
        self.days_left = days_left
        super().__init__(details)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["daysLeft"] = self.days_left
        return payload


class FiscalComplianceError(PolicyViolationError):
    """Modification of an issued document refused."""

    code: str = "FISCAL_COMPLIANCE_VIOLATION"
    error: str = "Modification not allowed"

    def __init__(self, details: str, hours_elapsed: float, max_hours: int):
        self.hours_elapsed = hours_elapsed
        self.max_hours = max_hours
        super().__init__(details)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["hoursElapsed"] = math.floor(self.hours_elapsed + 0.5)
        payload["maxHours"] = self.max_hours
        return payload


class ModificationWindowClosedError(FiscalComplianceError):
    """The document is older than the modification window."""

    error: str = "Modification window expired"


class InsufficientRoleError(FiscalComplianceError):
    """Only privileged roles may edit or delete issued documents."""

    error: str = "Insufficient role"

    def __init__(
        self, details: str, hours_elapsed: float, max_hours: int, actor_role: str
    ):
        self.actor_role = actor_role
        super().__init__(details, hours_elapsed, max_hours)


# Not found


class NotFoundError(FiscalKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    """No usage record exists for the account."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class DocumentNotFoundError(NotFoundError):
    """Fiscal document id is unknown."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Fiscal document not found: {document_id}")


class CredentialsNotFoundError(NotFoundError):
    """Integration credentials are not configured."""

    code: str = "CREDENTIALS_NOT_FOUND"

    def __init__(self):
        super().__init__("Integration credentials not configured")


# Immutability


class ImmutabilityError(FiscalKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """An ORM flush tried to update or delete a protected row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class ImmutableFieldError(ImmutabilityError):
    """An edit attempted to change a document identity field."""

    code: str = "IMMUTABLE_FIELD"

    def __init__(self, document_id: str, fields: tuple[str, ...]):
        self.document_id = document_id
        self.fields = fields
        super().__init__(
            f"Fields {', '.join(fields)} of document {document_id} are immutable"
        )


class InvalidDocumentChangesError(ImmutabilityError):
    """An edit whose ``details`` is not a mapping of field to value."""

    code: str = "INVALID_DOCUMENT_CHANGES"

    def __init__(self, document_id: str, received: str):
        self.document_id = document_id
        self.received = received
        super().__init__(
            f"Changes to document {document_id} must give details as a mapping, got {received}"
        )


# Concurrency


class ConcurrencyError(FiscalKernelError):
    """Base exception for concurrency errors. Callers may retry."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    The transaction lost a race (lock contention, deadlock, serialization
    failure).  Nothing was committed; retry with a transient-conflict policy.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Concurrent conflict during {operation}: {reason}")


class DuplicateDocumentNumberError(ConcurrencyConflictError):
    """The unique document-number constraint rejected an insert."""

    code: str = "DUPLICATE_DOCUMENT_NUMBER"

    def __init__(self, document_number: str):
        self.document_number = document_number
        super().__init__(
            "create_fiscal_document", f"document number already issued: {document_number}"
        )


# Audit


class AuditError(FiscalKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
