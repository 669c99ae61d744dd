"""
ModificationWindowGuard -- Time-box for edits and deletes of issued documents.

Responsibility:
    Decides whether an actor may mutate an issued FiscalDocument at a given
    instant.  Pure: the caller supplies the document, the role, and "now".

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Only privileged roles pass.  Role is checked before the window, so a
      non-privileged actor is always denied with reason ROLE.
    - ``hours_elapsed <= max_hours`` passes; anything beyond is denied with
      reason WINDOW.
    - ``hours_elapsed`` is always reported, allowed or not.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from fiscal_kernel.domain.dtos import ActorRole, FiscalDocument
from fiscal_kernel.exceptions import (
    FiscalComplianceError,
    InsufficientRoleError,
    ModificationWindowClosedError,
)

DEFAULT_WINDOW_HOURS = 24


class DenialReason(str, Enum):
    ROLE = "role"
    WINDOW = "window"


@dataclass(frozen=True)
class WindowDecision:
    allowed: bool
    hours_elapsed: float
    max_hours: int
    reason: DenialReason | None = None
    actor_role: str | None = None

    def to_violation(self) -> FiscalComplianceError:
        """Typed policy violation for a denied decision."""
        if self.allowed:
            raise ValueError("decision is not a denial")
        if self.reason == DenialReason.ROLE:
            return InsufficientRoleError(
                "Solo los administradores pueden modificar facturas emitidas",
                hours_elapsed=self.hours_elapsed,
                max_hours=self.max_hours,
                actor_role=self.actor_role or "",
            )
        return ModificationWindowClosedError(
            f"No se pueden modificar facturas después de {self.max_hours} horas "
            "(cumplimiento fiscal)",
            hours_elapsed=self.hours_elapsed,
            max_hours=self.max_hours,
        )


class ModificationWindowGuard:
    """Authorizes post-issuance mutations by role and elapsed time."""

    def __init__(
        self,
        max_hours: int = DEFAULT_WINDOW_HOURS,
        privileged_roles: Iterable[str] = (ActorRole.ADMIN.value,),
    ):
        self.max_hours = max_hours
        self.privileged_roles = frozenset(
            r.value if isinstance(r, ActorRole) else str(r) for r in privileged_roles
        )

    @staticmethod
    def hours_elapsed(issued_at: datetime, now: datetime) -> float:
        return (now - issued_at).total_seconds() / 3600

    def authorize(
        self,
        document: FiscalDocument,
        actor_role: ActorRole | str,
        now: datetime,
    ) -> WindowDecision:
        role = actor_role.value if isinstance(actor_role, ActorRole) else str(actor_role)
        elapsed = self.hours_elapsed(document.issued_at, now)

        if role not in self.privileged_roles:
            return WindowDecision(
                allowed=False,
                hours_elapsed=elapsed,
                max_hours=self.max_hours,
                reason=DenialReason.ROLE,
                actor_role=role,
            )

        if elapsed > self.max_hours:
            return WindowDecision(
                allowed=False,
                hours_elapsed=elapsed,
                max_hours=self.max_hours,
                reason=DenialReason.WINDOW,
                actor_role=role,
            )

        return WindowDecision(
            allowed=True,
            hours_elapsed=elapsed,
            max_hours=self.max_hours,
            actor_role=role,
        )
