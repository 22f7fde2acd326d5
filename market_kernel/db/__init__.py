"""Database layer - engine, base classes, column types, and immutability."""

from market_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from market_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from market_kernel.db.types import Amount, LongText, ShortCode, UTCDateTime, apply_bps

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Amount",
    "ShortCode",
    "LongText",
    "UTCDateTime",
    "apply_bps",
]
