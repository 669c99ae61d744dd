"""
Settings loader (``fiscal_config.loader``).

Responsibility
--------------
Reads ``defaults.yaml``, merges an optional override file on top of it,
applies the environment-variable overrides and parses the result into
``fiscal_config.schema`` dataclasses.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown keys in a section are rejected, so a typo in an override file
  fails loudly instead of being ignored.
* ``compute_checksum`` is deterministic for identical effective data.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from fiscal_config.schema import (
    DatabaseSettings,
    FiscalSettings,
    ModificationSettings,
    PermitSettings,
    QuotaSettings,
    VaultSettings,
)
from fiscal_kernel.services.credential_vault import (
    MAX_IV_BYTES,
    MIN_IV_BYTES,
    MIN_KDF_ITERATIONS,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_FILE_ENV = "FISCAL_CONFIG_FILE"
ENVIRONMENT_ENV = "FISCAL_ENVIRONMENT"
DATABASE_URL_ENV = "DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields ``{}``."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; ``override`` wins, lists are replaced."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(cls, name: str, data: Mapping[str, Any] | None):
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{name}' section: {', '.join(unknown)}")
    return cls(**data)


def _require_positive(section: str, name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{section}.{name} must be positive, got {value!r}")


def parse_settings(data: Mapping[str, Any], checksum: str = "") -> FiscalSettings:
    """Build FiscalSettings from merged raw data and validate ranges."""
    vault = _section(VaultSettings, "vault", data.get("vault"))
    permit = _section(PermitSettings, "permit", data.get("permit"))
    modification_raw = dict(data.get("modification") or {})
    if "privileged_roles" in modification_raw:
        modification_raw["privileged_roles"] = tuple(
            str(role) for role in modification_raw["privileged_roles"]
        )
    modification = _section(ModificationSettings, "modification", modification_raw)
    quota = _section(QuotaSettings, "quota", data.get("quota"))
    database = _section(DatabaseSettings, "database", data.get("database"))

    if vault.min_key_length < 32:
        raise ValueError("vault.min_key_length cannot be below 32")
    for name in ("kdf_iterations", "salt_bytes", "iv_bytes", "placeholder_length"):
        _require_positive("vault", name, getattr(vault, name))
    if vault.kdf_iterations < MIN_KDF_ITERATIONS:
        raise ValueError(f"vault.kdf_iterations cannot be below {MIN_KDF_ITERATIONS}")
    if not MIN_IV_BYTES <= vault.iv_bytes <= MAX_IV_BYTES:
        raise ValueError(f"vault.iv_bytes must be between {MIN_IV_BYTES} and {MAX_IV_BYTES}")
    _require_positive("modification", "window_hours", modification.window_hours)
    if not modification.privileged_roles:
        raise ValueError("modification.privileged_roles cannot be empty")
    _require_positive("quota", "default_monthly_limit", quota.default_monthly_limit)
    if not 0 < quota.near_limit_ratio <= 1:
        raise ValueError("quota.near_limit_ratio must be in (0, 1]")

    return FiscalSettings(
        environment=str(data.get("environment", "development")),
        vault=vault,
        permit=permit,
        modification=modification,
        quota=quota,
        database=database,
        checksum=checksum,
    )


def load_settings(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> FiscalSettings:
    """
    Defaults, then the override file, then environment variables.

    ``config_path`` wins over ``FISCAL_CONFIG_FILE``.
    """
    environ = environ if environ is not None else {}
    data = load_yaml_file(DEFAULTS_PATH)

    override = config_path or environ.get(CONFIG_FILE_ENV)
    if override:
        data = merge(data, load_yaml_file(Path(override)))

    if environ.get(ENVIRONMENT_ENV):
        data["environment"] = environ[ENVIRONMENT_ENV]
    if environ.get(DATABASE_URL_ENV):
        data.setdefault("database", {})["url"] = environ[DATABASE_URL_ENV]

    return parse_settings(data, checksum=compute_checksum(data))
