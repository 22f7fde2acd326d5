"""
Module: market_kernel.models.consultation
Responsibility: ORM persistence for paid consultation calls inside a
    conversation.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - At most one unused payment per (user, conversation).  ``unused_marker``
      is 1 while unused and NULL once used; the unique constraint over
      (user_id, conversation_id, unused_marker) ignores NULLs, so any number
      of used payments may coexist with a single unused one.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, SmallInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString

UNUSED = 1


class ConsultationPayment(TrackedBase):
    """A consultation fee paid by a user, redeemable for one scheduled meeting."""

    __tablename__ = "consultation_payments"

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "conversation_id",
            "unused_marker",
            name="uq_consultation_unused",
        ),
        Index("idx_consultation_conversation", "conversation_id"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    conversation_id: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id"),
        nullable=False,
    )
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    unused_marker: Mapped[int | None] = mapped_column(
        SmallInteger,
        default=UNUSED,
        nullable=True,
    )
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    meeting_at: Mapped[datetime | None] = mapped_column(nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        state = "used" if self.used else "unused"
        return f"<ConsultationPayment {self.user_id}/{self.conversation_id} {state}>"
