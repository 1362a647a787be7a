"""Utility modules for the e-invoicing kernel."""

from einvoice_kernel.utils.hashing import (
    GENESIS_DIGEST,
    canonicalize_json,
    document_digest,
    hash_payload,
)

__all__ = [
    "GENESIS_DIGEST",
    "canonicalize_json",
    "document_digest",
    "hash_payload",
]
