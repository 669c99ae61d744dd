"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (callers pass "now" or inject a Clock)
- I/O

All domain objects are immutable and deterministic.
"""

from fiscal_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fiscal_kernel.domain.document_number import (
    DocumentNumber,
    counter_name,
    format_document_number,
    is_valid_code,
    parse_document_number,
)
from fiscal_kernel.domain.dtos import (
    DOCUMENT_IDENTITY_FIELDS,
    AccountUsage,
    ActorRole,
    AuditAction,
    AuditEventRecord,
    FiscalDocument,
    FiscalPermit,
    IntegrationCredentials,
    OperationMode,
    SafeIntegrationCredentials,
    SubscriptionType,
)
from fiscal_kernel.domain.modification_window import (
    DenialReason,
    ModificationWindowGuard,
    WindowDecision,
)
from fiscal_kernel.domain.permit_validator import (
    PermitDateCheck,
    PermitState,
    PermitStatus,
    PermitVerdict,
    evaluate,
    permit_status,
    validate_permit_dates,
)
from fiscal_kernel.domain.ruc import validate_ruc

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # DTOs
    "AccountUsage",
    "ActorRole",
    "AuditAction",
    "AuditEventRecord",
    "DOCUMENT_IDENTITY_FIELDS",
    "FiscalDocument",
    "FiscalPermit",
    "IntegrationCredentials",
    "OperationMode",
    "SafeIntegrationCredentials",
    "SubscriptionType",
    # Numbering
    "DocumentNumber",
    "counter_name",
    "format_document_number",
    "is_valid_code",
    "parse_document_number",
    # Permit
    "PermitDateCheck",
    "PermitState",
    "PermitStatus",
    "PermitVerdict",
    "evaluate",
    "permit_status",
    "validate_permit_dates",
    "validate_ruc",
    # Modification window
    "DenialReason",
    "ModificationWindowGuard",
    "WindowDecision",
]
