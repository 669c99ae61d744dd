"""
FiscalPermitValidator -- Pure timbrado validity gating.

Responsibility:
    Evaluates a FiscalPermit against a calendar date and decides whether
    invoicing may proceed.  Also validates permit dates at configuration time
    and renders the three-state status (expired / warning / valid) shown to
    operators.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A missing or incomplete permit always blocks issuance.
    - ``as_of > valid_to`` always blocks issuance.
    - ``days_left`` is the whole-day difference ``valid_to - as_of``
      (negative once expired).
    - The 30-day warning never changes ``blocks_issuance``.

Failure modes:
    None raised; every outcome is a PermitVerdict or PermitDateCheck value.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

from fiscal_kernel.domain.dtos import FiscalPermit

DEFAULT_EXPIRY_WARNING_DAYS = 30
DEFAULT_MAX_START_AGE_YEARS = 5


@dataclass(frozen=True)
class PermitVerdict:
    """Outcome of evaluating a permit for issuance."""

    valid: bool
    blocks_issuance: bool
    days_left: int | None = None
    error: str | None = None

    def to_status_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "isValid": self.valid,
            "blocksIssuance": self.blocks_issuance,
        }
        if self.days_left is not None:
            payload["daysLeft"] = self.days_left
        if self.error is not None:
            payload["error"] = self.error
        return payload


class PermitState(str, Enum):
    EXPIRED = "expired"
    WARNING = "warning"
    VALID = "valid"


@dataclass(frozen=True)
class PermitStatus:
    """Operator-facing status of a permit's remaining validity."""

    state: PermitState
    days_left: int
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.state.value,
            "daysLeft": self.days_left,
            "message": self.message,
        }


@dataclass(frozen=True)
class PermitDateCheck:
    """Result of validating a permit's validity window before saving it."""

    valid: bool
    error: str | None = None
    warning: str | None = None


def days_until_expiration(valid_to: date, as_of: date) -> int:
    return (valid_to - as_of).days


def evaluate(permit: FiscalPermit | None, as_of: date) -> PermitVerdict:
    """
    Decide whether a document may be issued under ``permit`` on ``as_of``.

    Rules are applied in order; the first failing rule wins.  A permit whose
    ``valid_from`` lies after ``as_of`` is not blocked here: the original
    gating only ever looked at the end of the window.
    """
    if permit is None:
        return PermitVerdict(
            valid=False,
            blocks_issuance=True,
            error=(
                "Configuración de empresa no encontrada. Debe configurar los "
                "datos fiscales antes de emitir facturas."
            ),
        )

    if permit.valid_to is None or permit.valid_from is None:
        return PermitVerdict(
            valid=False,
            blocks_issuance=True,
            error=(
                "Fecha de vencimiento de timbrado no configurada. Complete la "
                "configuración fiscal."
            ),
        )

    if not permit.permit_number:
        return PermitVerdict(
            valid=False,
            blocks_issuance=True,
            error="Número de timbrado no configurado. Complete la configuración fiscal.",
        )

    if not permit.establishment_code or not permit.point_of_sale_code:
        return PermitVerdict(
            valid=False,
            blocks_issuance=True,
            error=(
                "Establecimiento y punto de expedición no configurados. "
                "Complete la configuración fiscal."
            ),
        )

    days_left = days_until_expiration(permit.valid_to, as_of)
    if days_left < 0:
        return PermitVerdict(
            valid=False,
            blocks_issuance=True,
            days_left=days_left,
            error=(
                f"Timbrado vencido hace {abs(days_left)} días. No se pueden "
                "emitir facturas con timbrado vencido."
            ),
        )

    return PermitVerdict(valid=True, blocks_issuance=False, days_left=days_left)


def permit_status(
    valid_to: date,
    as_of: date,
    warning_days: int = DEFAULT_EXPIRY_WARNING_DAYS,
) -> PermitStatus:
    days_left = days_until_expiration(valid_to, as_of)
    if days_left < 0:
        return PermitStatus(
            PermitState.EXPIRED, days_left, f"Timbrado vencido hace {abs(days_left)} días"
        )
    if days_left <= warning_days:
        return PermitStatus(
            PermitState.WARNING, days_left, f"Timbrado vence en {days_left} días"
        )
    return PermitStatus(
        PermitState.VALID, days_left, f"Timbrado válido por {days_left} días más"
    )


def _years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return day.replace(year=day.year - years, day=28)


def validate_permit_dates(
    valid_from: date,
    valid_to: date,
    as_of: date,
    max_start_age_years: int = DEFAULT_MAX_START_AGE_YEARS,
    warning_days: int = DEFAULT_EXPIRY_WARNING_DAYS,
) -> PermitDateCheck:
    """
    Validate a permit window at configuration time.

    Checks, in order: ``valid_to`` after ``valid_from``; ``valid_from`` no
    older than ``max_start_age_years``; ``valid_to`` not already past.  A
    window ending within ``warning_days`` is valid with a warning.
    """
    if valid_to <= valid_from:
        return PermitDateCheck(
            valid=False,
            error="La fecha de vencimiento debe ser posterior a la fecha de inicio",
        )

    if valid_from < _years_before(as_of, max_start_age_years):
        return PermitDateCheck(
            valid=False,
            error=(
                f"La fecha de inicio no puede ser mayor a {max_start_age_years} "
                "años en el pasado"
            ),
        )

    if valid_to < as_of:
        return PermitDateCheck(
            valid=False,
            error="El timbrado ya ha vencido. Debe renovarlo antes de continuar.",
        )

    if days_until_expiration(valid_to, as_of) <= warning_days:
        return PermitDateCheck(
            valid=True,
            warning=(
                f"El timbrado vence en menos de {warning_days} días. Se "
                "recomienda renovarlo pronto."
            ),
        )

    return PermitDateCheck(valid=True)
