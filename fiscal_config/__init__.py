"""
fiscal_config -- single public entrypoint for fiscal kernel settings.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``, and the only code that reads configuration
    files or environment variables.  The kernel MUST NEVER import from
    ``fiscal_config``; ``fiscal_config.bridges`` builds kernel objects from
    the settings.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - Deterministic checksum: the same effective settings always produce
      the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- override file does not exist.
    - ``ValueError`` -- unknown keys or out-of-range values.
    - ``MasterKeyError`` -- from ``resolve_master_key`` only.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``fiscal_config_loaded`` log entry with the environment and checksum,
    which ties a running process to the exact settings that governed it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from fiscal_config.loader import load_settings
from fiscal_config.master_key import MasterKey, resolve_master_key
from fiscal_config.schema import FiscalSettings

_logger = logging.getLogger("fiscal_kernel.config")

__all__ = [
    "FiscalSettings",
    "MasterKey",
    "get_active_config",
    "resolve_master_key",
]


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> FiscalSettings:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override file merged over the defaults.  Falls back to
            ``FISCAL_CONFIG_FILE``.
        environ: Environment mapping.  Defaults to ``os.environ``.
    """
    environ = environ if environ is not None else os.environ
    settings = load_settings(config_path, environ)

    _logger.info(
        "fiscal_config_loaded",
        extra={
            "environment": settings.environment,
            "checksum": settings.checksum,
            "modification_window_hours": settings.modification.window_hours,
            "default_monthly_limit": settings.quota.default_monthly_limit,
        },
    )
    return settings
