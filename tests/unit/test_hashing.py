"""
Unit tests for deterministic hashing.

Verifies:
- The genesis digest constant
- Canonical JSON is key-order independent
- Document digests are base64 SHA-256
"""

import base64
import hashlib
from decimal import Decimal
from uuid import UUID

from einvoice_kernel.utils.hashing import (
    GENESIS_DIGEST,
    canonicalize_json,
    document_digest,
    hash_payload,
)


def test_genesis_digest_constant():
    assert GENESIS_DIGEST == (
        "NWZlY2ViNjZmZmM4NmYzOGQ5NTI3ODZjNmQ2OTZjNzljMmRiYzIzOWRkNGU5MWI0NjcyOWQ3M2EyN2ZiNTdlOQ=="
    )


def test_canonical_json_ignores_key_order():
    assert canonicalize_json({"b": 1, "a": 2}) == canonicalize_json({"a": 2, "b": 1})
    assert canonicalize_json({"a": 1}) == '{"a":1}'


def test_canonical_json_renders_decimal_and_uuid():
    value = UUID("12345678-1234-5678-1234-567812345678")
    assert canonicalize_json({"amount": Decimal("10.50"), "id": value}) == (
        '{"amount":"10.5","id":"12345678-1234-5678-1234-567812345678"}'
    )


def test_hash_payload_is_hex_sha256():
    digest = hash_payload({"reportingStatus": "REPORTED"})
    assert len(digest) == 64
    assert digest == hash_payload({"reportingStatus": "REPORTED"})
    assert digest != hash_payload({"reportingStatus": "NOT_REPORTED"})


def test_document_digest_is_base64_binary_sha256():
    data = b"<Invoice/>"
    expected = base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")
    assert document_digest(data) == expected
