"""
Fiscal settings schema.

Frozen dataclasses for the effective configuration.  The loader parses
YAML into these types; bridges turn them into kernel objects.
"""

from __future__ import annotations

from dataclasses import dataclass

PRODUCTION = "production"


@dataclass(frozen=True)
class VaultSettings:
    master_key_env: str = "DNIT_ENCRYPTION_KEY"
    min_key_length: int = 32
    kdf_iterations: int = 10000
    salt_bytes: int = 32
    iv_bytes: int = 16
    associated_data: str = "dnit-config"
    placeholder_length: int = 8
    require_key: bool = False


@dataclass(frozen=True)
class PermitSettings:
    expiry_warning_days: int = 30
    max_start_age_years: int = 5
    strict_ruc_validation: bool = False


@dataclass(frozen=True)
class ModificationSettings:
    window_hours: int = 24
    privileged_roles: tuple[str, ...] = ("admin",)


@dataclass(frozen=True)
class QuotaSettings:
    default_monthly_limit: int = 50
    near_limit_ratio: float = 0.8
    expiry_warning_days: int = 7


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///fiscal.db"
    echo: bool = False
    sqlite_busy_timeout: float = 30.0

    def __repr__(self) -> str:
        # URLs may carry passwords.
        return f"DatabaseSettings(url=<redacted>, echo={self.echo})"


@dataclass(frozen=True)
class FiscalSettings:
    """The effective configuration, with the checksum of its source data."""

    environment: str
    vault: VaultSettings
    permit: PermitSettings
    modification: ModificationSettings
    quota: QuotaSettings
    database: DatabaseSettings
    checksum: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment == PRODUCTION
