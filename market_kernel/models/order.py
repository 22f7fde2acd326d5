"""
Module: market_kernel.models.order
Responsibility: ORM persistence for escrowed orders and their disputes.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - amount and platform_fee are fixed at creation (0 <= fee <= amount).
    - status follows ORDER_WORKFLOW: active -> completed | disputed,
      disputed -> completed.
    - At most one dispute per order (unique order_id).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString


class OrderStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DISPUTED = "disputed"


class Order(TrackedBase):
    """
    Funds held in escrow for one accepted term.

    Guarantees:
        - While active or disputed, the escrow account holds ``amount`` for
          this order.
        - Once completed, exactly one settlement has moved the escrowed
          amount out (seller, platform, and for disputes possibly buyer).
    """

    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_order_amount_positive"),
        CheckConstraint(
            "platform_fee >= 0 AND platform_fee <= amount",
            name="ck_order_fee_range",
        ),
        CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)",
            name="ck_order_rating_range",
        ),
        Index("idx_order_buyer", "buyer_id"),
        Index("idx_order_seller", "seller_id"),
        Index("idx_order_status", "status"),
    )

    buyer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    platform_fee: Mapped[int] = mapped_column(nullable=False)

    origin_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    origin_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    work_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("work_requests.id"),
        nullable=True,
    )
    conversation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    package_label: Mapped[str | None] = mapped_column(String(200), nullable=True)

    status: Mapped[OrderStatus] = mapped_column(
        String(20),
        default=OrderStatus.ACTIVE,
        nullable=False,
    )
    delivery_due_at: Mapped[datetime] = mapped_column(nullable=False)

    # Operation that placed the escrow hold
    hold_operation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Latest work submission (last write wins)
    submission_message: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    submission_links: Mapped[list | None] = mapped_column(JSON, nullable=True)
    submission_files: Mapped[list | None] = mapped_column(JSON, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submission_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rating: Mapped[int | None] = mapped_column(nullable=True)
    review: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    # release_to_seller | refund_to_buyer | split:<bps>; NULL when completed normally
    resolution_outcome: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.amount} {self.status}>"


class OrderDispute(TrackedBase):
    """A dispute raised on an order, and later its resolution."""

    __tablename__ = "order_disputes"

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_dispute_order"),
        CheckConstraint(
            "seller_share_bps IS NULL OR (seller_share_bps >= 0 AND seller_share_bps <= 10000)",
            name="ck_dispute_share_range",
        ),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )
    raised_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reason: Mapped[str] = mapped_column(String(4000), nullable=False)
    evidence: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    raised_at: Mapped[datetime] = mapped_column(nullable=False)

    outcome: Mapped[str | None] = mapped_column(String(50), nullable=True)
    seller_share_bps: Mapped[int | None] = mapped_column(nullable=True)
    note: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<OrderDispute order={self.order_id} outcome={self.outcome}>"
