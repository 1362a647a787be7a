"""
Deterministic hashing utilities.

All hashing in the e-invoicing kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used throughout.
"""

import base64
import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

# Previous-invoice hash for the first document of every series: base64 of
# the hex SHA-256 of "0".
GENESIS_DIGEST = base64.b64encode(
    hashlib.sha256(b"0").hexdigest().encode("ascii")
).decode("ascii")


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, separators carry no whitespace, and Decimal, datetime
    and UUID values are rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def document_digest(document: bytes) -> str:
    """
    Base64-encoded SHA-256 of a document, the form the authority uses for
    invoice hashes.
    """
    return base64.b64encode(hashlib.sha256(document).digest()).decode("ascii")
