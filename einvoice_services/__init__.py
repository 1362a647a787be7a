"""Outer-layer adapters for the e-invoicing kernel."""

from einvoice_services.authority_gateway import (
    HttpAuthorityGateway,
    basic_auth_header,
    build_authority_gateway,
)

__all__ = [
    "HttpAuthorityGateway",
    "basic_auth_header",
    "build_authority_gateway",
]
