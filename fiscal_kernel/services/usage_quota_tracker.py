"""
UsageQuotaTracker -- per-account monthly invoicing quota.

Responsibility:
    Gates issuance on the account state and the monthly quota, counts
    issued documents, gives usage back on deletion, and reports usage for
    operators.

Architecture position:
    Kernel > Services.  ``check_and_reserve`` and ``commit`` run inside the
    issuance unit of work with the usage row locked; ``release_for_document``
    runs inside the deletion unit of work.

Invariants enforced:
    - Gate order: inactive -> blocked -> expired -> over limit.  The first
      failing gate is reported, not all of them.
    - Rollover: when the calendar month index (year*12 + month) of "now"
      exceeds that of ``period_started_at``, the count resets to 0 and the
      period restarts at "now" BEFORE the limit is compared, in the same
      transaction as the check.
    - ``current_period_count <= monthly_limit`` is enforced before the
      increment, never after.
    - Release never goes below zero and never touches a closed period:
      documents issued before ``period_started_at`` are not given back.
    - Release is skipped when the document has no recorded issuer.

Failure modes:
    - AccountNotFoundError for an account without a usage record.
    - UsageLimitExceededError from ``commit`` if the limit was reached
      between check and commit (only possible without a shared unit of work).
"""

import calendar
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from fiscal_kernel.domain.dtos import AccountUsage, FiscalDocument, SubscriptionType
from fiscal_kernel.exceptions import AccountNotFoundError, UsageLimitExceededError
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.services.base import BaseService
from fiscal_kernel.storage.protocol import FiscalUnitOfWork

logger = get_logger("services.usage_quota")

DEFAULT_MONTHLY_LIMIT = 50
DEFAULT_NEAR_LIMIT_RATIO = 0.8
DEFAULT_EXPIRY_WARNING_DAYS = 7

_DAY_SECONDS = 86400


class QuotaDenial(str, Enum):
    INACTIVE = "inactive"
    BLOCKED = "blocked"
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"


_DENIAL_DETAILS = {
    QuotaDenial.INACTIVE: "Cuenta inactiva",
    QuotaDenial.BLOCKED: "Cuenta bloqueada",
    QuotaDenial.EXPIRED: "Cuenta expirada",
}


@dataclass(frozen=True)
class QuotaCheck:
    """Outcome of ``check_and_reserve``."""

    allowed: bool
    current_usage: int | None = None
    limit: int | None = None
    reason: QuotaDenial | None = None
    details: str | None = None
    days_until_reset: int | None = None
    days_until_expiration: int | None = None
    rolled_over: bool = False

    def to_violation(self) -> UsageLimitExceededError:
        if self.allowed:
            raise ValueError("check passed; nothing to report")
        return UsageLimitExceededError(
            self.details or "",
            reason=self.reason.value if self.reason else "",
            current_usage=self.current_usage,
            limit=self.limit,
            days_until_reset=self.days_until_reset,
            days_until_expiration=self.days_until_expiration,
        )


@dataclass(frozen=True)
class UsageStats:
    current_usage: int
    monthly_limit: int
    remaining: int
    usage_percentage: float
    days_until_reset: int
    days_until_expiration: int | None
    subscription_type: SubscriptionType
    account_status: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "currentMonthInvoices": self.current_usage,
            "monthlyLimit": self.monthly_limit,
            "remainingInvoices": self.remaining,
            "usagePercentage": self.usage_percentage,
            "daysUntilReset": self.days_until_reset,
            "daysUntilExpiration": self.days_until_expiration,
            "subscriptionType": self.subscription_type.value,
            "accountStatus": self.account_status,
        }


@dataclass(frozen=True)
class AccountWarning:
    account_id: UUID
    current_usage: int
    limit: int
    usage_percentage: int | None = None
    account_expires_at: datetime | None = None
    days: int | None = None


@dataclass(frozen=True)
class UsageWarnings:
    near_limit: tuple[AccountWarning, ...]
    over_limit: tuple[AccountWarning, ...]
    expiring_soon: tuple[AccountWarning, ...]
    expired: tuple[AccountWarning, ...]

    @property
    def is_empty(self) -> bool:
        return not (self.near_limit or self.over_limit or self.expiring_soon or self.expired)


def month_index(moment: datetime) -> int:
    return moment.year * 12 + moment.month


def _local(moment: datetime, now: datetime) -> datetime:
    """``moment`` on the wall clock of ``now``; stores may hand timestamps back in UTC."""
    return moment.astimezone(now.tzinfo)


def add_one_month(moment: datetime) -> datetime:
    """Same wall-clock time one calendar month later, day clamped."""
    year, month = divmod(moment.month, 12)
    year += moment.year
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / _DAY_SECONDS)


def rollover_due(usage: AccountUsage, now: datetime) -> bool:
    return month_index(now) - month_index(_local(usage.period_started_at, now)) >= 1


def days_until_reset(usage: AccountUsage, now: datetime) -> int:
    return _ceil_days(add_one_month(_local(usage.period_started_at, now)) - now)


def days_until_expiration(usage: AccountUsage, now: datetime) -> int | None:
    if usage.account_expires_at is None:
        return None
    return _ceil_days(usage.account_expires_at - now)


class UsageQuotaTracker(BaseService):
    """Monthly quota gate and counter over the storage port."""

    def __init__(
        self,
        store,
        clock=None,
        default_monthly_limit: int = DEFAULT_MONTHLY_LIMIT,
        near_limit_ratio: float = DEFAULT_NEAR_LIMIT_RATIO,
        expiry_warning_days: int = DEFAULT_EXPIRY_WARNING_DAYS,
    ):
        super().__init__(store, clock)
        self.default_monthly_limit = default_monthly_limit
        self.near_limit_ratio = near_limit_ratio
        self.expiry_warning_days = expiry_warning_days

    # Provisioning

    def open_account(
        self,
        account_id: UUID,
        monthly_limit: int | None = None,
        account_expires_at: datetime | None = None,
        subscription_type: SubscriptionType = SubscriptionType.FREE,
        uow: FiscalUnitOfWork | None = None,
    ) -> AccountUsage:
        usage = AccountUsage(
            account_id=account_id,
            monthly_limit=monthly_limit or self.default_monthly_limit,
            current_period_count=0,
            period_started_at=self._clock.now(),
            account_expires_at=account_expires_at,
            subscription_type=subscription_type,
        )
        with self._unit(uow) as unit:
            return unit.create_account_usage(usage)

    # Gate and counter

    def _locked_usage(self, unit: FiscalUnitOfWork, account_id: UUID) -> AccountUsage:
        usage = unit.get_account_usage(account_id, for_update=True)
        if usage is None:
            raise AccountNotFoundError(str(account_id))
        return usage

    def _apply_rollover(
        self, unit: FiscalUnitOfWork, usage: AccountUsage, now: datetime
    ) -> tuple[AccountUsage, bool]:
        if not rollover_due(usage, now):
            return usage, False
        rolled = unit.update_account_usage(
            usage.account_id, current_period_count=0, period_started_at=now
        )
        logger.info(
            "usage_period_rolled_over",
            extra={
                "account_id": str(usage.account_id),
                "previous_count": usage.current_period_count,
                "previous_period_started_at": usage.period_started_at,
            },
        )
        return rolled, True

    def check_and_reserve(
        self, account_id: UUID, uow: FiscalUnitOfWork | None = None
    ) -> QuotaCheck:
        """
        Decide whether ``account_id`` may issue one more document now.

        The usage row stays locked for the rest of ``uow``; the caller
        follows up with ``commit`` in the same unit of work.
        """
        now = self._clock.now()
        with self._unit(uow) as unit:
            usage = self._locked_usage(unit, account_id)

            if not usage.active:
                return self._denied(usage, QuotaDenial.INACTIVE)
            if usage.blocked:
                return self._denied(usage, QuotaDenial.BLOCKED)
            if usage.account_expires_at is not None and usage.account_expires_at < now:
                return self._denied(usage, QuotaDenial.EXPIRED)

            usage, rolled_over = self._apply_rollover(unit, usage, now)

            if usage.current_period_count >= usage.monthly_limit:
                check = QuotaCheck(
                    allowed=False,
                    current_usage=usage.current_period_count,
                    limit=usage.monthly_limit,
                    reason=QuotaDenial.LIMIT_REACHED,
                    details=(
                        f"Ha alcanzado su límite mensual de {usage.monthly_limit} facturas"
                    ),
                    days_until_reset=days_until_reset(usage, now),
                    rolled_over=rolled_over,
                )
                logger.info(
                    "usage_limit_reached",
                    extra={
                        "account_id": str(account_id),
                        "current_usage": usage.current_period_count,
                        "limit": usage.monthly_limit,
                    },
                )
                return check

            return QuotaCheck(
                allowed=True,
                current_usage=usage.current_period_count,
                limit=usage.monthly_limit,
                days_until_reset=days_until_reset(usage, now),
                days_until_expiration=days_until_expiration(usage, now),
                rolled_over=rolled_over,
            )

    @staticmethod
    def _denied(usage: AccountUsage, reason: QuotaDenial) -> QuotaCheck:
        logger.info(
            "account_gate_denied",
            extra={"account_id": str(usage.account_id), "reason": reason.value},
        )
        return QuotaCheck(allowed=False, reason=reason, details=_DENIAL_DETAILS[reason])

    def commit(self, account_id: UUID, uow: FiscalUnitOfWork | None = None) -> int:
        """Count one issued document. Returns the new period count."""
        with self._unit(uow) as unit:
            usage = self._locked_usage(unit, account_id)
            if usage.current_period_count >= usage.monthly_limit:
                raise UsageLimitExceededError(
                    f"Ha alcanzado su límite mensual de {usage.monthly_limit} facturas",
                    reason=QuotaDenial.LIMIT_REACHED.value,
                    current_usage=usage.current_period_count,
                    limit=usage.monthly_limit,
                    days_until_reset=days_until_reset(usage, self._clock.now()),
                )
            updated = unit.update_account_usage(
                account_id, current_period_count=usage.current_period_count + 1
            )
        logger.debug(
            "usage_committed",
            extra={"account_id": str(account_id), "count": updated.current_period_count},
        )
        return updated.current_period_count

    def release(self, account_id: UUID, uow: FiscalUnitOfWork | None = None) -> int:
        """Give one document back, never below zero. Returns the new count."""
        with self._unit(uow) as unit:
            usage = self._locked_usage(unit, account_id)
            updated = unit.update_account_usage(
                account_id, current_period_count=max(0, usage.current_period_count - 1)
            )
        logger.debug(
            "usage_released",
            extra={"account_id": str(account_id), "count": updated.current_period_count},
        )
        return updated.current_period_count

    def release_for_document(
        self, document: FiscalDocument, uow: FiscalUnitOfWork | None = None
    ) -> int | None:
        """
        Give back the usage a deleted document consumed, if it still counts.

        Returns the new count, or None when nothing was released: unknown
        issuer, no usage record, or a document from a closed period.
        """
        if document.issued_by is None:
            logger.info(
                "usage_release_skipped",
                extra={"document_id": str(document.id), "reason": "no_issuer"},
            )
            return None

        now = self._clock.now()
        with self._unit(uow) as unit:
            usage = unit.get_account_usage(document.issued_by, for_update=True)
            if usage is None:
                logger.info(
                    "usage_release_skipped",
                    extra={"document_id": str(document.id), "reason": "no_usage_record"},
                )
                return None

            usage, _ = self._apply_rollover(unit, usage, now)
            if document.issued_at < usage.period_started_at:
                logger.info(
                    "usage_release_skipped",
                    extra={"document_id": str(document.id), "reason": "closed_period"},
                )
                return None

            return self.release(document.issued_by, uow=unit)

    # Reporting

    @staticmethod
    def _rolled_view(usage: AccountUsage, now: datetime) -> AccountUsage:
        """A due but unapplied rollover, reflected without writing it."""
        if rollover_due(usage, now):
            return replace(usage, current_period_count=0, period_started_at=now)
        return usage

    @staticmethod
    def _status(usage: AccountUsage, count: int, now: datetime) -> str:
        if not usage.active:
            return "inactive"
        if usage.blocked:
            return "blocked"
        if usage.account_expires_at is not None and usage.account_expires_at < now:
            return "expired"
        if count >= usage.monthly_limit:
            return "limit_reached"
        return "active"

    def usage_stats(
        self, account_id: UUID, uow: FiscalUnitOfWork | None = None
    ) -> UsageStats:
        """
        Read-only usage view.  A rollover that is due but not yet applied is
        reflected (count 0, period starting now) without writing it.
        """
        now = self._clock.now()
        with self._unit(uow) as unit:
            usage = unit.get_account_usage(account_id)
        if usage is None:
            raise AccountNotFoundError(str(account_id))

        usage = self._rolled_view(usage, now)
        count = usage.current_period_count
        return UsageStats(
            current_usage=count,
            monthly_limit=usage.monthly_limit,
            remaining=usage.remaining,
            usage_percentage=round(count / usage.monthly_limit * 100, 2),
            days_until_reset=days_until_reset(usage, now),
            days_until_expiration=days_until_expiration(usage, now),
            subscription_type=usage.subscription_type,
            account_status=self._status(usage, count, now),
        )

    def accounts_with_warnings(self, uow: FiscalUnitOfWork | None = None) -> UsageWarnings:
        """Active accounts near or over the limit, expiring soon, or expired."""
        now = self._clock.now()
        with self._unit(uow) as unit:
            usages = unit.list_account_usages()

        near, over, expiring, expired = [], [], [], []
        for usage in sorted(usages, key=lambda u: str(u.account_id)):
            if not usage.active:
                continue

            usage = self._rolled_view(usage, now)
            count = usage.current_period_count
            ratio = count / usage.monthly_limit
            if count >= usage.monthly_limit:
                over.append(AccountWarning(usage.account_id, count, usage.monthly_limit))
            elif ratio >= self.near_limit_ratio:
                near.append(
                    AccountWarning(
                        usage.account_id,
                        count,
                        usage.monthly_limit,
                        usage_percentage=math.floor(ratio * 100 + 0.5),
                    )
                )

            days = days_until_expiration(usage, now)
            if days is None:
                continue
            warning = AccountWarning(
                usage.account_id,
                count,
                usage.monthly_limit,
                account_expires_at=usage.account_expires_at,
                days=abs(days),
            )
            if days < 0:
                expired.append(warning)
            elif days <= self.expiry_warning_days:
                expiring.append(warning)

        return UsageWarnings(tuple(near), tuple(over), tuple(expiring), tuple(expired))
