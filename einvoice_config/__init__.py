"""
einvoice_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``einvoice_kernel`` and below
    ``einvoice_services``.  The kernel MUST NEVER import from
    ``einvoice_config``; ``einvoice_config.bridges`` translates the parsed
    configuration into kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through get_active_config().
    - Environment overrides are limited to EINVOICE_CONFIG (file selection)
      and DATABASE_URL (database.url).

Failure modes:
    - ``FileNotFoundError`` -- the selected file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing keys or invalid values.

Audit relevance:
    Every call emits an ``EINVOICE_CONFIG_TRACE`` log entry with the source
    path and checksum.
"""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path

from einvoice_config.loader import load_config
from einvoice_config.schema import (
    AuthorityConfig,
    ChainConfig,
    DatabaseConfig,
    DocumentConfig,
    EInvoiceConfig,
)
from einvoice_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "EINVOICE_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> EInvoiceConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``config_path`` argument, then the
    ``EINVOICE_CONFIG`` environment variable, then the packaged
    ``defaults.yaml``.  ``DATABASE_URL`` replaces ``database.url`` when set.

    Raises:
        FileNotFoundError: The selected file does not exist.
        KeyError: A required key is missing.
        ValueError: A value is invalid.
    """
    path = Path(config_path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    config = load_config(path)

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        config = dataclasses.replace(
            config,
            database=dataclasses.replace(config.database, url=database_url),
        )

    _logger.info(
        "EINVOICE_CONFIG_TRACE",
        extra={
            "trace_type": "EINVOICE_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": config.checksum,
            "database_override": bool(database_url),
        },
    )
    return config


__all__ = [
    "AuthorityConfig",
    "ChainConfig",
    "DatabaseConfig",
    "DocumentConfig",
    "EInvoiceConfig",
    "get_active_config",
]
