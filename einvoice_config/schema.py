"""
EInvoiceConfig schema.

Frozen dataclasses that the YAML loader parses into.  The kernel never sees
these types directly; einvoice_config.bridges translates them into kernel
inputs (AssemblerSettings, genesis digest, engine arguments).
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False


# ---------------------------------------------------------------------------
# Authority gateway
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthorityConfig:
    """
    Authority API endpoints.

    Onboarding in non-production goes to the developer portal; submissions
    in non-production go to the simulation environment; production uses the
    core environment for both.
    """

    developer_portal_url: str
    simulation_url: str
    production_url: str
    api_version: str = "V2"
    language: str = "en"
    timeout_seconds: float = 30.0

    def onboarding_url(self, production: bool) -> str:
        return self.production_url if production else self.developer_portal_url

    def submission_url(self, production: bool) -> str:
        return self.production_url if production else self.simulation_url


# ---------------------------------------------------------------------------
# Documents and chain
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentConfig:
    default_currency: str = "SAR"
    reporting_currency: str = "SAR"
    time_zone: str = "Asia/Riyadh"
    default_unit_code: str = "PCE"
    walk_in_name: str = "Walk-in Customer"


@dataclass(frozen=True)
class ChainConfig:
    genesis_digest: str


@dataclass(frozen=True)
class EInvoiceConfig:
    """Complete runtime configuration; checksum identifies the source YAML."""

    database: DatabaseConfig
    authority: AuthorityConfig
    document: DocumentConfig
    chain: ChainConfig
    checksum: str = ""
