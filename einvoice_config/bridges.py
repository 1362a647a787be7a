"""
Config -> Kernel Bridges.

Functions that convert EInvoiceConfig into kernel-compatible inputs.  These
live in einvoice_config (the producer) because the kernel must NEVER import
einvoice_config.

Usage:
    from einvoice_config.bridges import build_assembler_settings, init_engine

    config = get_active_config()
    init_engine(config)
    service = InvoiceService(
        session, signer, clock,
        settings=build_assembler_settings(config),
        genesis_digest=config.chain.genesis_digest,
    )
"""

from __future__ import annotations

from sqlalchemy.engine import Engine

from einvoice_config.schema import EInvoiceConfig
from einvoice_kernel.db.engine import init_engine_from_url
from einvoice_kernel.domain.assembler import AssemblerSettings


def build_assembler_settings(config: EInvoiceConfig) -> AssemblerSettings:
    return AssemblerSettings(
        default_currency=config.document.default_currency,
        reporting_currency=config.document.reporting_currency,
        default_unit_code=config.document.default_unit_code,
        time_zone=config.document.time_zone,
        walk_in_name=config.document.walk_in_name,
    )


def init_engine(config: EInvoiceConfig) -> Engine:
    """Initialize the kernel's global engine from the database section."""
    database = config.database
    return init_engine_from_url(
        database.url,
        echo=database.echo,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_timeout=database.pool_timeout,
    )
