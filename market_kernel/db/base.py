"""
Module: market_kernel.db.base
Responsibility: Declarative bases for every marketplace table.
Architecture position: Kernel > DB.  Imported by every model module; imports
    nothing above db/.

Conventions:
    - Every row has a uuid4 primary key (``UUIDString``).
    - Annotated ``int`` columns are BigInteger, which is where money lives.
    - Annotated ``datetime`` columns are UTC-aware (``UTCDateTime``).
    - ``TrackedBase`` rows record who created and last changed them.  Those
      audit columns may change even on rows the immutability listeners
      otherwise protect.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from market_kernel.db.types import UTCDateTime, UUIDString

__all__ = ["UUID", "Base", "TrackedBase", "UUIDString"]


class Base(DeclarativeBase):
    """Shared metadata, annotation map and uuid primary key."""

    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        datetime: UTCDateTime(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds created/updated timestamps and the acting user's id."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
    created_by_id: Mapped[UUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString())
