"""
Config -> Kernel Bridges.

Functions that turn FiscalSettings into kernel objects.  They live in
fiscal_config (the producer) because the kernel must NEVER import
fiscal_config.

Usage:
    from fiscal_config import get_active_config
    from fiscal_config.bridges import build_core, build_store

    settings = get_active_config()
    core = build_core(build_store(settings), settings)
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from fiscal_config.master_key import MasterKey, resolve_master_key
from fiscal_config.schema import FiscalSettings
from fiscal_kernel.domain.clock import Clock
from fiscal_kernel.domain.modification_window import ModificationWindowGuard
from fiscal_kernel.services.core import FiscalCore
from fiscal_kernel.services.credential_vault import CredentialVault
from fiscal_kernel.services.usage_quota_tracker import UsageQuotaTracker
from fiscal_kernel.storage.protocol import FiscalStore
from fiscal_kernel.storage.sqlalchemy_store import SqlAlchemyFiscalStore


def build_vault(settings: FiscalSettings, master_key: MasterKey) -> CredentialVault:
    vault = settings.vault
    return CredentialVault(
        master_key.material,
        insecure_default=master_key.is_insecure_default,
        kdf_iterations=vault.kdf_iterations,
        salt_bytes=vault.salt_bytes,
        iv_bytes=vault.iv_bytes,
        associated_data=vault.associated_data.encode("utf-8"),
        placeholder_length=vault.placeholder_length,
    )


def build_guard(settings: FiscalSettings) -> ModificationWindowGuard:
    return ModificationWindowGuard(
        max_hours=settings.modification.window_hours,
        privileged_roles=settings.modification.privileged_roles,
    )


def build_quota(
    settings: FiscalSettings, store: FiscalStore, clock: Clock | None = None
) -> UsageQuotaTracker:
    return UsageQuotaTracker(
        store,
        clock,
        default_monthly_limit=settings.quota.default_monthly_limit,
        near_limit_ratio=settings.quota.near_limit_ratio,
        expiry_warning_days=settings.quota.expiry_warning_days,
    )


def build_store(settings: FiscalSettings, clock: Clock | None = None) -> SqlAlchemyFiscalStore:
    """SQLAlchemy store for ``database.url``; creates the schema if missing."""
    db = settings.database
    return SqlAlchemyFiscalStore.from_url(
        db.url,
        clock=clock,
        echo=db.echo,
        sqlite_busy_timeout=db.sqlite_busy_timeout,
    )


def build_core(
    store: FiscalStore,
    settings: FiscalSettings | None = None,
    clock: Clock | None = None,
    environ: Mapping[str, str] | None = None,
) -> FiscalCore:
    """
    Assemble a FiscalCore over ``store`` from settings and the environment.

    Raises:
        MasterKeyError: when the master key is invalid, or missing where
            it is required.
    """
    environ = environ if environ is not None else os.environ
    if settings is None:
        from fiscal_config import get_active_config

        settings = get_active_config(environ=environ)

    master_key = resolve_master_key(settings.vault, environ, settings.environment)
    return FiscalCore(
        store,
        vault=build_vault(settings, master_key),
        clock=clock,
        guard=build_guard(settings),
        quota=build_quota(settings, store, clock),
        permit_service_options={
            "expiry_warning_days": settings.permit.expiry_warning_days,
            "max_start_age_years": settings.permit.max_start_age_years,
            "strict_ruc_validation": settings.permit.strict_ruc_validation,
        },
    )
