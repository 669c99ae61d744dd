"""
IntegrationCredentialsService -- the tax-authority integration record.

Responsibility:
    Validates and stores the integration endpoint and its secrets.  Secrets
    are sealed by CredentialVault before they reach the storage port and
    are only opened for the internal ``load_decrypted`` view.

Invariants enforced:
    - The safe read view never carries plaintext or envelopes, only
      ``has_*`` flags.
    - An update value made of placeholder characters keeps the stored
      envelope untouched (it is never re-sealed, never decrypted).
    - ``auth_token`` is required on first save and cannot be cleared.
      Optional secrets are cleared by an empty string.
    - Audit payloads name the fields that changed, never their values.

Failure modes:
    - CredentialsValidationError for a malformed update.
    - CredentialsNotFoundError for operations on a record that does not
      exist.
"""

from dataclasses import dataclass, replace
from urllib.parse import urlsplit
from uuid import UUID

from fiscal_kernel.domain.dtos import (
    IntegrationCredentials,
    OperationMode,
    SafeIntegrationCredentials,
)
from fiscal_kernel.exceptions import CredentialsNotFoundError, CredentialsValidationError
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.services.auditor_service import AuditorService
from fiscal_kernel.services.base import BaseService
from fiscal_kernel.services.credential_vault import CredentialVault
from fiscal_kernel.storage.protocol import FiscalUnitOfWork

logger = get_logger("services.integration_credentials")

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class CredentialsUpdate:
    """
    Requested change to the integration record.

    For each secret: None or a placeholder keeps the stored value, ``""``
    clears it, anything else replaces it.
    """

    endpoint_url: str
    auth_token: str | None = None
    certificate_blob: str | None = None
    certificate_password: str | None = None
    mode: OperationMode | str | None = None
    active: bool | None = None


def _validate_endpoint(url: str) -> str:
    url = (url or "").strip()
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise CredentialsValidationError("endpoint_url", "Invalid URL format")
    return url


def _validate_mode(mode: OperationMode | str) -> OperationMode:
    try:
        return OperationMode(mode)
    except ValueError:
        raise CredentialsValidationError(
            "mode", f"Operation mode must be one of: testing, production (got {mode!r})"
        ) from None


class IntegrationCredentialsService(BaseService):
    def __init__(self, store, vault: CredentialVault, auditor: AuditorService, clock=None):
        super().__init__(store, clock)
        self._vault = vault
        self._auditor = auditor

    def _resolve_secret(
        self,
        field: str,
        requested: str | None,
        stored: str | None,
        required: bool = False,
    ) -> tuple[str | None, bool]:
        """Return (value to store, changed)."""
        if requested is None or self._vault.is_placeholder(requested):
            if required and not stored:
                raise CredentialsValidationError(field, "Auth token is required")
            return stored, False
        if requested.strip() == "":
            if required:
                raise CredentialsValidationError(field, "Auth token is required")
            return None, stored is not None
        return self._vault.seal(requested), True

    def save(
        self,
        update: CredentialsUpdate,
        actor_id: UUID,
        uow: FiscalUnitOfWork | None = None,
    ) -> SafeIntegrationCredentials:
        """Create or update the integration record. Returns the safe view."""
        endpoint_url = _validate_endpoint(update.endpoint_url)

        with self._unit(uow) as unit:
            existing = unit.get_integration_credentials()

            auth_token, token_changed = self._resolve_secret(
                "auth_token",
                update.auth_token,
                existing.auth_token if existing else None,
                required=True,
            )
            certificate_blob, blob_changed = self._resolve_secret(
                "certificate_blob",
                update.certificate_blob,
                existing.certificate_blob if existing else None,
            )
            certificate_password, password_changed = self._resolve_secret(
                "certificate_password",
                update.certificate_password,
                existing.certificate_password if existing else None,
            )

            if update.mode is not None:
                mode = _validate_mode(update.mode)
            else:
                mode = existing.mode if existing else OperationMode.TESTING

            if update.active is not None:
                active = update.active
            else:
                active = existing.active if existing else False

            changed = [
                name
                for name, did_change in (
                    ("auth_token", token_changed),
                    ("certificate_blob", blob_changed),
                    ("certificate_password", password_changed),
                )
                if did_change
            ]
            if existing is None or existing.endpoint_url != endpoint_url:
                changed.append("endpoint_url")
            if existing is None or existing.mode != mode:
                changed.append("mode")
            if existing is None or existing.active != active:
                changed.append("active")

            base = existing or IntegrationCredentials(endpoint_url=endpoint_url, auth_token="")
            saved = unit.save_integration_credentials(
                replace(
                    base,
                    endpoint_url=endpoint_url,
                    auth_token=auth_token,
                    certificate_blob=certificate_blob,
                    certificate_password=certificate_password,
                    mode=mode,
                    active=active,
                ),
                actor_id,
            )
            self._auditor.record_credentials_saved(
                unit, saved.id, tuple(changed), actor_id=actor_id
            )

        logger.info(
            "integration_credentials_saved",
            extra={"changed_fields": sorted(changed), "mode": mode.value},
        )
        return SafeIntegrationCredentials.from_stored(saved)

    def read_safe(
        self, uow: FiscalUnitOfWork | None = None
    ) -> SafeIntegrationCredentials | None:
        with self._unit(uow) as unit:
            stored = unit.get_integration_credentials()
        return SafeIntegrationCredentials.from_stored(stored) if stored else None

    def load_decrypted(self, uow: FiscalUnitOfWork | None = None) -> IntegrationCredentials:
        """
        Plaintext view for the tax-authority client.

        Never return this to an API caller.  Values that fail to open are
        returned as stored (see CredentialVault.open).
        """
        with self._unit(uow) as unit:
            stored = unit.get_integration_credentials()
        if stored is None:
            raise CredentialsNotFoundError()

        def _open(value: str | None) -> str | None:
            return self._vault.open(value) if value else value

        return replace(
            stored,
            auth_token=_open(stored.auth_token),
            certificate_blob=_open(stored.certificate_blob),
            certificate_password=_open(stored.certificate_password),
        )

    def record_connection_test(
        self,
        success: bool,
        error: str | None = None,
        actor_id: UUID | None = None,
        uow: FiscalUnitOfWork | None = None,
    ) -> SafeIntegrationCredentials:
        with self._unit(uow) as unit:
            stored = unit.get_integration_credentials()
            if stored is None:
                raise CredentialsNotFoundError()
            saved = unit.save_integration_credentials(
                replace(
                    stored,
                    last_test_at=self._clock.now(),
                    last_test_status=STATUS_SUCCESS if success else STATUS_FAILED,
                    last_test_error=None if success else error,
                ),
                actor_id,
            )

        logger.info(
            "integration_connection_tested",
            extra={"status": saved.last_test_status},
        )
        return SafeIntegrationCredentials.from_stored(saved)

    def delete(self, actor_id: UUID, uow: FiscalUnitOfWork | None = None) -> None:
        with self._unit(uow) as unit:
            stored = unit.get_integration_credentials()
            if stored is None:
                raise CredentialsNotFoundError()
            unit.delete_integration_credentials()
            self._auditor.record_credentials_deleted(unit, stored.id, actor_id=actor_id)

        logger.info("integration_credentials_deleted")
