"""
FiscalCore -- wires the fiscal services over one store and one clock.

The core ties together:
- CredentialVault: secrets at rest
- InvoiceNumberAllocator: document numbering
- UsageQuotaTracker: monthly quota
- ModificationWindowGuard: post-issuance mutations
- AuditorService: hash-chained audit trail

and exposes the request-facing services built from them.  It never reads
configuration files or the environment; ``fiscal_config.bridges`` builds
the collaborators from settings and hands them in.
"""

from typing import Any

from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.domain.modification_window import ModificationWindowGuard
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.services.auditor_service import AuditorService
from fiscal_kernel.services.credential_vault import CredentialVault
from fiscal_kernel.services.document_modification_service import (
    DocumentModificationService,
)
from fiscal_kernel.services.fiscal_permit_service import FiscalPermitService
from fiscal_kernel.services.integration_credentials_service import (
    IntegrationCredentialsService,
)
from fiscal_kernel.services.invoice_number_allocator import InvoiceNumberAllocator
from fiscal_kernel.services.issuance_service import IssuanceService
from fiscal_kernel.services.usage_quota_tracker import UsageQuotaTracker
from fiscal_kernel.storage.protocol import FiscalStore

logger = get_logger("services.core")


class FiscalCore:
    """
    Assembly of the fiscal services.

    Guarantees:
        - All services share the same store and clock.
        - Construction with the insecure default master key is logged at
          WARNING and reported by ``startup_report()``.
    """

    def __init__(
        self,
        store: FiscalStore,
        vault: CredentialVault,
        clock: Clock | None = None,
        guard: ModificationWindowGuard | None = None,
        quota: UsageQuotaTracker | None = None,
        permit_service_options: dict[str, Any] | None = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.vault = vault
        self.guard = guard or ModificationWindowGuard()

        self.auditor = AuditorService(store, self.clock)
        self.allocator = InvoiceNumberAllocator(store, self.clock)
        self.quota = quota or UsageQuotaTracker(store, self.clock)
        self.permits = FiscalPermitService(
            store, self.auditor, self.clock, **(permit_service_options or {})
        )
        self.issuance = IssuanceService(
            store, self.quota, self.allocator, self.auditor, self.clock
        )
        self.modifications = DocumentModificationService(
            store, self.guard, self.quota, self.auditor, self.clock
        )
        self.credentials = IntegrationCredentialsService(
            store, self.vault, self.auditor, self.clock
        )

        if vault.uses_insecure_default:
            logger.warning(
                "insecure_default_master_key",
                extra={
                    "details": (
                        "Integration secrets are sealed with the built-in "
                        "development key. Set a master key before production use."
                    )
                },
            )

        logger.info(
            "fiscal_core_initialized",
            extra={
                "store": type(store).__name__,
                "modification_window_hours": self.guard.max_hours,
            },
        )

    def startup_report(self) -> dict[str, Any]:
        """Operator-facing summary of the security-relevant startup state."""
        return {
            "insecureDefaultKey": self.vault.uses_insecure_default,
            "store": type(self.store).__name__,
            "modificationWindowHours": self.guard.max_hours,
            "privilegedRoles": sorted(self.guard.privileged_roles),
            "defaultMonthlyLimit": self.quota.default_monthly_limit,
        }
