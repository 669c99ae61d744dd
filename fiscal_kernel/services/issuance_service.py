"""
IssuanceService -- the single entry point for issuing a fiscal document.

Responsibility:
    Runs every issuance as one unit of work through an ordered pipeline of
    steps.  Each step receives a frozen IssuanceContext and returns a
    GateOutcome: passed (with the enriched context) or rejected (with the
    typed policy violation).  The first rejection ends the pipeline.

Issuance flow:
    issue(account_id, details, ...)
      1. Quota gate      (UsageQuotaTracker.check_and_reserve, row locked,
                          rollover applied before the limit check)
      2. Permit gate     (FiscalPermitValidator.evaluate against today)
      3. Allocate number (InvoiceNumberAllocator.next under the counter lock)
      4. Persist         (create_fiscal_document with permit and issuer)
      5. Commit usage    (UsageQuotaTracker.commit)
      6. Audit           (DOCUMENT_ISSUED)

Invariants enforced:
    - Quota and permit are re-checked inside the same transaction that
      allocates the number and writes the document.
    - A rejection never consumes a number.  A rejection still commits the
      rollover side effect of the quota gate.
    - Any exception rolls back the whole unit of work: no number, no
      document, no usage increment, no audit event.

Failure modes:
    - Rejections are returned, not raised (IssuanceResult.rejection).
      ``IssuanceResult.unwrap()`` raises them for callers that prefer
      exceptions.
    - ConcurrencyConflictError (incl. DuplicateDocumentNumberError) and
      AccountNotFoundError propagate after rollback.  Never retried here.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from fiscal_kernel.domain import permit_validator
from fiscal_kernel.domain.document_number import DocumentNumber
from fiscal_kernel.domain.dtos import FiscalDocument, FiscalPermit
from fiscal_kernel.domain.permit_validator import PermitVerdict
from fiscal_kernel.exceptions import PermitInvalidError, PolicyViolationError
from fiscal_kernel.logging_config import LogContext, get_logger
from fiscal_kernel.services.auditor_service import AuditorService
from fiscal_kernel.services.base import BaseService
from fiscal_kernel.services.invoice_number_allocator import InvoiceNumberAllocator
from fiscal_kernel.services.usage_quota_tracker import QuotaCheck, UsageQuotaTracker
from fiscal_kernel.storage.protocol import FiscalUnitOfWork
from fiscal_kernel.utils.hashing import to_json_safe

logger = get_logger("services.issuance")


class IssuanceStatus(str, Enum):
    ISSUED = "issued"
    REJECTED = "rejected"


@dataclass(frozen=True)
class IssuanceContext:
    """State threaded through the issuance steps. Each step returns a copy."""

    account_id: UUID
    now: datetime
    details: dict[str, Any] = field(default_factory=dict)
    actor_role: str | None = None
    establishment_code: str | None = None
    point_of_sale_code: str | None = None
    quota: QuotaCheck | None = None
    permit: FiscalPermit | None = None
    verdict: PermitVerdict | None = None
    number: DocumentNumber | None = None
    document: FiscalDocument | None = None
    usage_count: int | None = None


@dataclass(frozen=True)
class GateOutcome:
    context: IssuanceContext
    rejection: PolicyViolationError | None = None

    @property
    def passed(self) -> bool:
        return self.rejection is None

    @classmethod
    def ok(cls, context: IssuanceContext) -> "GateOutcome":
        return cls(context=context)

    @classmethod
    def rejected(
        cls, context: IssuanceContext, violation: PolicyViolationError
    ) -> "GateOutcome":
        return cls(context=context, rejection=violation)


@dataclass(frozen=True)
class IssuanceResult:
    status: IssuanceStatus
    document: FiscalDocument | None = None
    usage_count: int | None = None
    verdict: PermitVerdict | None = None
    rejection: PolicyViolationError | None = None

    @property
    def is_success(self) -> bool:
        return self.status == IssuanceStatus.ISSUED

    def unwrap(self) -> FiscalDocument:
        """The issued document, or raise the rejection."""
        if self.rejection is not None:
            raise self.rejection
        return self.document

    def to_payload(self) -> dict[str, Any] | None:
        return self.rejection.to_payload() if self.rejection is not None else None


Step = Callable[[FiscalUnitOfWork, IssuanceContext], GateOutcome]


class IssuanceService(BaseService):
    """
    Issues fiscal documents.

    Contract:
        ``issue`` either returns ISSUED with a persisted, numbered,
        audited document and the new usage count, or REJECTED with the
        first failing gate's violation.

    Non-goals:
        - Does NOT retry on ConcurrencyConflictError.
        - Does NOT talk to the tax authority.
    """

    def __init__(
        self,
        store,
        quota: UsageQuotaTracker,
        allocator: InvoiceNumberAllocator,
        auditor: AuditorService,
        clock=None,
    ):
        super().__init__(store, clock)
        self._quota = quota
        self._allocator = allocator
        self._auditor = auditor
        self._steps: tuple[Step, ...] = (
            self._quota_gate,
            self._permit_gate,
            self._allocate_number,
            self._persist_document,
            self._commit_usage,
            self._record_audit,
        )

    def issue(
        self,
        account_id: UUID,
        details: dict[str, Any] | None = None,
        establishment_code: str | None = None,
        point_of_sale_code: str | None = None,
        actor_role: str | None = None,
        uow: FiscalUnitOfWork | None = None,
    ) -> IssuanceResult:
        """
        Issue one document for ``account_id``.

        ``establishment_code`` / ``point_of_sale_code`` override the codes
        of the configured permit for this document only.
        """
        context = IssuanceContext(
            account_id=account_id,
            now=self._clock.now(),
            details=dict(details or {}),
            actor_role=actor_role,
            establishment_code=establishment_code,
            point_of_sale_code=point_of_sale_code,
        )

        with LogContext.bind(correlation_id=str(uuid4()), account_id=str(account_id)):
            logger.info("issuance_started", extra={"actor_role": actor_role})
            t0 = time.monotonic()
            try:
                with self._unit(uow) as unit:
                    outcome = self._run(unit, context)
            except Exception:
                logger.error(
                    "issuance_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            result = self._to_result(outcome)
            logger.info(
                "issuance_completed",
                extra={
                    "status": result.status.value,
                    "document_number": (
                        result.document.document_number if result.document else None
                    ),
                    "rejection_code": result.rejection.code if result.rejection else None,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _run(self, unit: FiscalUnitOfWork, context: IssuanceContext) -> GateOutcome:
        outcome = GateOutcome.ok(context)
        for step in self._steps:
            outcome = step(unit, outcome.context)
            if not outcome.passed:
                break
        return outcome

    @staticmethod
    def _to_result(outcome: GateOutcome) -> IssuanceResult:
        ctx = outcome.context
        if not outcome.passed:
            return IssuanceResult(
                status=IssuanceStatus.REJECTED,
                verdict=ctx.verdict,
                rejection=outcome.rejection,
            )
        return IssuanceResult(
            status=IssuanceStatus.ISSUED,
            document=ctx.document,
            usage_count=ctx.usage_count,
            verdict=ctx.verdict,
        )

    # Steps

    def _quota_gate(self, unit: FiscalUnitOfWork, ctx: IssuanceContext) -> GateOutcome:
        check = self._quota.check_and_reserve(ctx.account_id, uow=unit)
        ctx = replace(ctx, quota=check)
        if not check.allowed:
            return GateOutcome.rejected(ctx, check.to_violation())
        return GateOutcome.ok(ctx)

    def _permit_gate(self, unit: FiscalUnitOfWork, ctx: IssuanceContext) -> GateOutcome:
        permit = unit.get_fiscal_permit()
        verdict = permit_validator.evaluate(permit, ctx.now.date())
        ctx = replace(ctx, permit=permit, verdict=verdict)
        if verdict.blocks_issuance:
            logger.info(
                "issuance_blocked_by_permit",
                extra={"days_left": verdict.days_left},
            )
            return GateOutcome.rejected(
                ctx, PermitInvalidError(verdict.error or "", days_left=verdict.days_left)
            )
        return GateOutcome.ok(ctx)

    def _allocate_number(
        self, unit: FiscalUnitOfWork, ctx: IssuanceContext
    ) -> GateOutcome:
        est = ctx.establishment_code or ctx.permit.establishment_code
        pos = ctx.point_of_sale_code or ctx.permit.point_of_sale_code
        number = self._allocator.next(est, pos, uow=unit)
        return GateOutcome.ok(
            replace(ctx, number=number, establishment_code=est, point_of_sale_code=pos)
        )

    def _persist_document(
        self, unit: FiscalUnitOfWork, ctx: IssuanceContext
    ) -> GateOutcome:
        document = unit.create_fiscal_document(
            FiscalDocument(
                id=uuid4(),
                document_number=str(ctx.number),
                establishment_code=ctx.number.establishment_code,
                point_of_sale_code=ctx.number.point_of_sale_code,
                sequence=ctx.number.sequence,
                permit_number_used=ctx.permit.permit_number,
                issued_at=ctx.now,
                issued_by=ctx.account_id,
                details=to_json_safe(ctx.details),
            )
        )
        return GateOutcome.ok(replace(ctx, document=document))

    def _commit_usage(self, unit: FiscalUnitOfWork, ctx: IssuanceContext) -> GateOutcome:
        count = self._quota.commit(ctx.account_id, uow=unit)
        return GateOutcome.ok(replace(ctx, usage_count=count))

    def _record_audit(self, unit: FiscalUnitOfWork, ctx: IssuanceContext) -> GateOutcome:
        self._auditor.record_document_issued(
            unit,
            ctx.document,
            actor_id=ctx.account_id,
            usage_count=ctx.usage_count,
            actor_role=ctx.actor_role,
        )
        return GateOutcome.ok(ctx)
