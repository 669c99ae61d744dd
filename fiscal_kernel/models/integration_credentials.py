"""
Module: fiscal_kernel.models.integration_credentials
Responsibility: ORM persistence for the tax-authority (DNIT) integration
    record.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain DTOs only.

Invariants enforced:
    - Secret columns hold CredentialVault envelopes, never plaintext written
      by this kernel.  Legacy plaintext rows remain readable.
    - At most one row (singleton configuration).
"""

from datetime import datetime

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import TrackedBase, UTCDateTime
from fiscal_kernel.domain.dtos import IntegrationCredentials, OperationMode


class IntegrationCredentialsModel(TrackedBase):
    __tablename__ = "integration_credentials"

    endpoint_url: Mapped[str] = mapped_column(String(500), nullable=False)
    auth_token: Mapped[str] = mapped_column(Text, nullable=False)
    certificate_blob: Mapped[str | None] = mapped_column(Text, nullable=True)
    certificate_password: Mapped[str | None] = mapped_column(Text, nullable=True)
    mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OperationMode.TESTING.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    last_test_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_test_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_test_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<IntegrationCredentials {self.endpoint_url} mode={self.mode}>"

    def to_dto(self) -> IntegrationCredentials:
        return IntegrationCredentials(
            id=self.id,
            endpoint_url=self.endpoint_url,
            auth_token=self.auth_token,
            certificate_blob=self.certificate_blob,
            certificate_password=self.certificate_password,
            mode=OperationMode(self.mode),
            active=self.is_active,
            last_test_at=self.last_test_at,
            last_test_status=self.last_test_status,
            last_test_error=self.last_test_error,
            updated_at=self.updated_at,
        )

    def apply(self, dto: IntegrationCredentials) -> None:
        self.endpoint_url = dto.endpoint_url
        self.auth_token = dto.auth_token
        self.certificate_blob = dto.certificate_blob
        self.certificate_password = dto.certificate_password
        self.mode = dto.mode.value
        self.is_active = dto.active
        self.last_test_at = dto.last_test_at
        self.last_test_status = dto.last_test_status
        self.last_test_error = dto.last_test_error
