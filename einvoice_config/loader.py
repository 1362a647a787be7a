"""
Configuration Loader (``einvoice_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
``einvoice_config.schema`` dataclasses.  Callers use
``einvoice_config.get_active_config()``; this module is the parsing step
behind it.

Invariants enforced
-------------------
* Missing required keys raise ``KeyError``; bad values raise
  ``ValueError``.  Required fields never get silent defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` is a deterministic SHA-256 of the parsed source.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from einvoice_config.schema import (
    AuthorityConfig,
    ChainConfig,
    DatabaseConfig,
    DocumentConfig,
    EInvoiceConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _require_currency(value: Any, key: str) -> str:
    if not isinstance(value, str) or len(value) != 3 or not value.isupper():
        raise ValueError(f"{key} must be a 3-letter ISO 4217 code, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=data["url"],
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=int(data.get("pool_timeout", 30)),
        echo=bool(data.get("echo", False)),
    )


def parse_authority(data: dict[str, Any]) -> AuthorityConfig:
    timeout = float(data.get("timeout_seconds", 30.0))
    if timeout <= 0:
        raise ValueError(f"authority.timeout_seconds must be positive, got {timeout}")
    return AuthorityConfig(
        developer_portal_url=data["developer_portal_url"].rstrip("/"),
        simulation_url=data["simulation_url"].rstrip("/"),
        production_url=data["production_url"].rstrip("/"),
        api_version=str(data.get("api_version", "V2")),
        language=str(data.get("language", "en")),
        timeout_seconds=timeout,
    )


def parse_document(data: dict[str, Any]) -> DocumentConfig:
    return DocumentConfig(
        default_currency=_require_currency(
            data.get("default_currency", "SAR"), "document.default_currency",
        ),
        reporting_currency=_require_currency(
            data.get("reporting_currency", "SAR"), "document.reporting_currency",
        ),
        time_zone=data.get("time_zone", "Asia/Riyadh"),
        default_unit_code=data.get("default_unit_code", "PCE"),
        walk_in_name=data.get("walk_in_name", "Walk-in Customer"),
    )


def parse_chain(data: dict[str, Any]) -> ChainConfig:
    digest = data["genesis_digest"]
    if not digest:
        raise ValueError("chain.genesis_digest must not be empty")
    return ChainConfig(genesis_digest=digest)


def parse_config(data: dict[str, Any]) -> EInvoiceConfig:
    """
    Parse the top-level mapping.

    Raises:
        KeyError: a required section or key is missing.
        ValueError: a value is out of range.
    """
    return EInvoiceConfig(
        database=parse_database(data["database"]),
        authority=parse_authority(data["authority"]),
        document=parse_document(data.get("document") or {}),
        chain=parse_chain(data["chain"]),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> EInvoiceConfig:
    return parse_config(load_yaml_file(path))
