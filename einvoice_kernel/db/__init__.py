"""Database layer - engine, base classes, types, and immutability."""

from einvoice_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from einvoice_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from einvoice_kernel.db.types import Currency, Digest, Money, Sequence, round_amount

__all__ = [
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Currency",
    "Digest",
    "Sequence",
    "round_amount",
]
