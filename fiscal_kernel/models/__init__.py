"""SQLAlchemy ORM models backing the SQLAlchemy storage adapter."""

from fiscal_kernel.models.account_usage import AccountUsageModel
from fiscal_kernel.models.audit_event import AuditEvent
from fiscal_kernel.models.fiscal_document import FiscalDocumentModel
from fiscal_kernel.models.fiscal_permit import FiscalPermitModel
from fiscal_kernel.models.integration_credentials import IntegrationCredentialsModel
from fiscal_kernel.models.sequence_counter import SequenceCounter

__all__ = [
    "AccountUsageModel",
    "AuditEvent",
    "FiscalDocumentModel",
    "FiscalPermitModel",
    "IntegrationCredentialsModel",
    "SequenceCounter",
]
