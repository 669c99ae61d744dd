"""
Master key resolution for the credential vault.

The only place the vault key is read from the environment.  A missing key
falls back to a built-in development key that is reported as insecure; in
production, or when ``vault.require_key`` is set, a missing key is fatal.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from fiscal_config.schema import VaultSettings
from fiscal_kernel.exceptions import MasterKeyError

_logger = logging.getLogger("fiscal_kernel.config")

# Development only.  Anything sealed with it is readable by anyone with
# this source file.
INSECURE_DEFAULT_KEY = b"dev-default-key-not-secure-change-in-production!"[:32]


@dataclass(frozen=True)
class MasterKey:
    material: bytes = field(repr=False)
    is_insecure_default: bool = False
    source: str = ""


def resolve_master_key(
    vault: VaultSettings,
    environ: Mapping[str, str] | None = None,
    environment: str = "development",
) -> MasterKey:
    """
    Read the master key named by ``vault.master_key_env``.

    Raises:
        MasterKeyError: MASTER_KEY_INVALID if the key is shorter than
            ``vault.min_key_length``; MASTER_KEY_MISSING if it is absent
            and required.
    """
    environ = environ if environ is not None else os.environ
    env_var = vault.master_key_env
    raw = environ.get(env_var)

    if raw:
        if len(raw) < vault.min_key_length:
            raise MasterKeyError(
                f"must be at least {vault.min_key_length} characters long", env_var
            )
        return MasterKey(material=raw.encode("utf-8"), source=env_var)

    if vault.require_key or environment == "production":
        raise MasterKeyError("is required but not set", env_var, missing=True)

    _logger.warning(
        "master_key_missing",
        extra={"env_var": env_var, "environment": environment},
    )
    return MasterKey(
        material=INSECURE_DEFAULT_KEY, is_insecure_default=True, source="insecure_default"
    )
