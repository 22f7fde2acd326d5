"""
Module: market_kernel.db.types
Responsibility: Column types and annotated aliases shared by every model.
Architecture position: Kernel > DB.  MUST NOT import from models/, domain/,
    services/, or selectors/.

Invariants enforced:
    - Money is ``int`` in the smallest currency unit (piastres, cents).
      BigInteger columns, never Numeric and never float.
    - Ids are UUIDs stored as text.
    - Timestamps are timezone-aware UTC on the way in and on the way out,
      whatever the backend stores.
"""

from datetime import datetime, timezone
from typing import Annotated
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, String
from sqlalchemy.types import TypeDecorator

# Amount in the smallest currency unit
Amount = Annotated[int, BigInteger]

# Short identifier strings (status, kind, codes)
ShortCode = Annotated[str, String(50)]

# Long text for descriptions and messages
LongText = Annotated[str, String(4000)]

BPS_DENOMINATOR = 10_000


class UUIDString(TypeDecorator):
    """UUID kept as its 36-character text form, so ids compare the same on every backend."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    PostgreSQL keeps the offset natively; SQLite returns naive values.  Both
    are normalized to UTC-aware datetimes so comparisons against the
    injected Clock never mix naive and aware values.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def apply_bps(amount: int, bps: int) -> int:
    """
    Take ``bps`` basis points of ``amount``, rounding down.

    Floor rounding keeps every derived share at or below its source, so
    splitting an escrowed amount can never create money.
    """
    return amount * bps // BPS_DENOMINATOR
