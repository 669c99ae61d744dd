"""
Module: fiscal_kernel.models.account_usage
Responsibility: ORM persistence for the per-account monthly invoicing counter
    and the account gates (active, blocked, expiry) evaluated before it.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain DTOs only.

Invariants enforced:
    - monthly_limit > 0 and current_period_count >= 0 (CHECK constraints).
    - One row per account (unique account_id).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import Base, UTCDateTime, UUIDString
from fiscal_kernel.domain.dtos import AccountUsage, SubscriptionType


class AccountUsageModel(Base):
    __tablename__ = "account_usage"

    __table_args__ = (
        CheckConstraint("monthly_limit > 0", name="ck_usage_limit_positive"),
        CheckConstraint("current_period_count >= 0", name="ck_usage_count_non_negative"),
    )

    account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)

    monthly_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    current_period_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    period_started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    account_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    subscription_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionType.FREE.value
    )

    def __repr__(self) -> str:
        return (
            f"<AccountUsage {self.account_id} "
            f"{self.current_period_count}/{self.monthly_limit}>"
        )

    def to_dto(self) -> AccountUsage:
        return AccountUsage(
            account_id=self.account_id,
            monthly_limit=self.monthly_limit,
            current_period_count=self.current_period_count,
            period_started_at=self.period_started_at,
            account_expires_at=self.account_expires_at,
            active=self.is_active,
            blocked=self.is_blocked,
            subscription_type=SubscriptionType(self.subscription_type),
        )

    @classmethod
    def from_dto(cls, dto: AccountUsage) -> "AccountUsageModel":
        return cls(
            account_id=dto.account_id,
            monthly_limit=dto.monthly_limit,
            current_period_count=dto.current_period_count,
            period_started_at=dto.period_started_at,
            account_expires_at=dto.account_expires_at,
            is_active=dto.active,
            is_blocked=dto.blocked,
            subscription_type=dto.subscription_type.value,
        )

    def apply(self, dto: AccountUsage) -> None:
        """Copy mutable fields from a DTO onto this row."""
        self.monthly_limit = dto.monthly_limit
        self.current_period_count = dto.current_period_count
        self.period_started_at = dto.period_started_at
        self.account_expires_at = dto.account_expires_at
        self.is_active = dto.active
        self.is_blocked = dto.blocked
        self.subscription_type = dto.subscription_type.value
