"""
FiscalPermitService -- timbrado configuration and status.

Responsibility:
    Validates a permit before it replaces the current one, records the
    change in the audit chain, and reports the current permit's status.

Architecture position:
    Kernel > Services.  Pure validation is delegated to
    ``fiscal_kernel.domain.permit_validator``.

Invariants enforced:
    - A permit is saved only if ``valid_from < valid_to``, ``valid_from`` is
      not older than the configured maximum start age, ``valid_to`` is not
      already past, and both codes are exactly three digits.
    - Permits are superseded, never deleted.
    - Every save appends a PERMIT_CONFIGURED audit event in the same unit
      of work.

Failure modes:
    - PermitConfigurationError (code PERMIT_CONFIGURATION_INVALID) with a
      Spanish detail naming the first failing rule.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

from fiscal_kernel.domain import permit_validator
from fiscal_kernel.domain.document_number import is_valid_code
from fiscal_kernel.domain.dtos import FiscalPermit
from fiscal_kernel.domain.permit_validator import PermitStatus, PermitVerdict
from fiscal_kernel.domain.ruc import validate_ruc
from fiscal_kernel.exceptions import PermitConfigurationError
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.services.auditor_service import AuditorService
from fiscal_kernel.services.base import BaseService
from fiscal_kernel.storage.protocol import FiscalUnitOfWork

logger = get_logger("services.fiscal_permit")


@dataclass(frozen=True)
class PermitConfigured:
    permit: FiscalPermit
    warning: str | None = None
    superseded_id: UUID | None = None


@dataclass(frozen=True)
class PermitReport:
    verdict: PermitVerdict
    status: PermitStatus | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = self.verdict.to_status_payload()
        if self.status is not None:
            payload["status"] = self.status.to_payload()
        return payload


def _permit_payload(permit: FiscalPermit) -> dict[str, Any]:
    return {
        "permit_number": permit.permit_number,
        "valid_from": permit.valid_from,
        "valid_to": permit.valid_to,
        "establishment_code": permit.establishment_code,
        "point_of_sale_code": permit.point_of_sale_code,
        "ruc": permit.ruc,
    }


class FiscalPermitService(BaseService):
    def __init__(
        self,
        store,
        auditor: AuditorService,
        clock=None,
        expiry_warning_days: int = permit_validator.DEFAULT_EXPIRY_WARNING_DAYS,
        max_start_age_years: int = permit_validator.DEFAULT_MAX_START_AGE_YEARS,
        strict_ruc_validation: bool = False,
    ):
        super().__init__(store, clock)
        self._auditor = auditor
        self.expiry_warning_days = expiry_warning_days
        self.max_start_age_years = max_start_age_years
        self.strict_ruc_validation = strict_ruc_validation

    def _validate(self, permit: FiscalPermit, as_of: date) -> str | None:
        """Raise on the first invalid field; return the date warning, if any."""
        if not permit.permit_number or not permit.permit_number.strip():
            raise PermitConfigurationError(
                "permit_number", "El número de timbrado es obligatorio"
            )
        if permit.valid_from is None or permit.valid_to is None:
            raise PermitConfigurationError(
                "valid_to", "Las fechas de inicio y vencimiento son obligatorias"
            )

        check = permit_validator.validate_permit_dates(
            permit.valid_from,
            permit.valid_to,
            as_of,
            max_start_age_years=self.max_start_age_years,
            warning_days=self.expiry_warning_days,
        )
        if not check.valid:
            raise PermitConfigurationError("valid_to", check.error or "")

        if not is_valid_code(permit.establishment_code):
            raise PermitConfigurationError(
                "establishment_code",
                "El código de establecimiento debe tener exactamente 3 dígitos",
            )
        if not is_valid_code(permit.point_of_sale_code):
            raise PermitConfigurationError(
                "point_of_sale_code",
                "El punto de expedición debe tener exactamente 3 dígitos",
            )

        if self.strict_ruc_validation and permit.ruc and not validate_ruc(permit.ruc):
            raise PermitConfigurationError(
                "ruc", "RUC inválido. Formato esperado: 12345678-9"
            )

        return check.warning

    def configure(
        self,
        permit: FiscalPermit,
        actor_id: UUID,
        uow: FiscalUnitOfWork | None = None,
    ) -> PermitConfigured:
        """Validate ``permit`` and make it the current one."""
        warning = self._validate(permit, self._clock.today())

        with self._unit(uow) as unit:
            previous = unit.get_fiscal_permit()
            saved = unit.save_fiscal_permit(permit, actor_id)
            superseded_id = previous.id if previous is not None else None
            self._auditor.record_permit_configured(
                unit,
                permit_id=saved.id,
                permit_payload=_permit_payload(saved),
                actor_id=actor_id,
                superseded_id=superseded_id,
            )

        logger.info(
            "fiscal_permit_configured",
            extra={
                "permit_number": saved.permit_number,
                "valid_to": saved.valid_to,
                "has_warning": warning is not None,
            },
        )
        return PermitConfigured(permit=saved, warning=warning, superseded_id=superseded_id)

    def current(self, uow: FiscalUnitOfWork | None = None) -> FiscalPermit | None:
        with self._unit(uow) as unit:
            return unit.get_fiscal_permit()

    def status(
        self, as_of: date | None = None, uow: FiscalUnitOfWork | None = None
    ) -> PermitReport:
        as_of = as_of or self._clock.today()
        permit = self.current(uow)
        verdict = permit_validator.evaluate(permit, as_of)

        status = None
        if permit is not None and permit.valid_to is not None:
            status = permit_validator.permit_status(
                permit.valid_to, as_of, warning_days=self.expiry_warning_days
            )
        return PermitReport(verdict=verdict, status=status)
