"""Services for the fiscal kernel (imperative shell)."""

from fiscal_kernel.services.auditor_service import AuditorService, AuditTrace
from fiscal_kernel.services.core import FiscalCore
from fiscal_kernel.services.credential_vault import CredentialVault
from fiscal_kernel.services.document_modification_service import (
    DocumentModificationService,
    ModificationResult,
    ModificationStatus,
)
from fiscal_kernel.services.fiscal_permit_service import (
    FiscalPermitService,
    PermitConfigured,
    PermitReport,
)
from fiscal_kernel.services.integration_credentials_service import (
    CredentialsUpdate,
    IntegrationCredentialsService,
)
from fiscal_kernel.services.invoice_number_allocator import InvoiceNumberAllocator
from fiscal_kernel.services.issuance_service import (
    GateOutcome,
    IssuanceContext,
    IssuanceResult,
    IssuanceService,
    IssuanceStatus,
)
from fiscal_kernel.services.sequence_service import SequenceService
from fiscal_kernel.services.usage_quota_tracker import (
    QuotaCheck,
    QuotaDenial,
    UsageQuotaTracker,
    UsageStats,
    UsageWarnings,
)

__all__ = [
    "AuditorService",
    "AuditTrace",
    "CredentialVault",
    "CredentialsUpdate",
    "DocumentModificationService",
    "FiscalCore",
    "FiscalPermitService",
    "GateOutcome",
    "IntegrationCredentialsService",
    "InvoiceNumberAllocator",
    "IssuanceContext",
    "IssuanceResult",
    "IssuanceService",
    "IssuanceStatus",
    "ModificationResult",
    "ModificationStatus",
    "PermitConfigured",
    "PermitReport",
    "QuotaCheck",
    "QuotaDenial",
    "SequenceService",
    "UsageQuotaTracker",
    "UsageStats",
    "UsageWarnings",
]
