"""
Module: market_kernel.models.negotiation
Responsibility: ORM persistence for the negotiation stage -- work requests,
    the proposals filed against them, and direct offers in conversations.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - At most one pending or accepted proposal per (work request, provider);
      submissions serialize on the work request row lock.
    - Proposal positions are unique per work request and give the stable
      display order.
    - At most one accepted proposal per work request (the open -> in_progress
      compare-and-set on the request guards it).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from market_kernel.db.base import TrackedBase, UUIDString


class WorkRequestStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLOSED = "closed"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class WorkRequest(TrackedBase):
    """A requester's posted job, open for proposals until one is accepted."""

    __tablename__ = "work_requests"

    __table_args__ = (
        Index("idx_work_request_status", "status"),
        Index("idx_work_request_requester", "requester_id"),
    )

    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(String(4000), nullable=False)
    skills: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    budget_min: Mapped[int] = mapped_column(nullable=False)
    budget_max: Mapped[int] = mapped_column(nullable=False)

    # Free-form label ("2 weeks", "ASAP"); not a timer
    deadline: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[WorkRequestStatus] = mapped_column(
        String(20),
        default=WorkRequestStatus.OPEN,
        nullable=False,
    )

    proposals: Mapped[list["Proposal"]] = relationship(
        "Proposal",
        back_populates="work_request",
        order_by="Proposal.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WorkRequest {self.id} {self.status}>"

    def proposal(self, proposal_id: UUID) -> "Proposal | None":
        """Look up an owned proposal by its stable id."""
        for p in self.proposals:
            if p.id == proposal_id:
                return p
        return None


class Proposal(TrackedBase):
    """A provider's application to a work request."""

    __tablename__ = "proposals"

    __table_args__ = (
        UniqueConstraint("work_request_id", "position", name="uq_proposal_position"),
        Index("idx_proposal_provider", "provider_id"),
    )

    work_request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("work_requests.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False)
    provider_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    price: Mapped[int] = mapped_column(nullable=False)
    delivery_days: Mapped[int] = mapped_column(nullable=False)
    message: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    status: Mapped[ProposalStatus] = mapped_column(
        String(20),
        default=ProposalStatus.PENDING,
        nullable=False,
    )
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)

    work_request: Mapped[WorkRequest] = relationship(
        "WorkRequest",
        back_populates="proposals",
    )

    def __repr__(self) -> str:
        return f"<Proposal {self.id} #{self.position} {self.status}>"


class Offer(TrackedBase):
    """
    A direct offer sent inside a conversation.

    The buyer and seller are fixed at creation from the sender's role: a
    provider sending an offer is the seller, a requester sending one is the
    buyer.  Only the receiver may accept or reject.
    """

    __tablename__ = "offers"

    __table_args__ = (
        Index("idx_offer_conversation", "conversation_id"),
        Index("idx_offer_status", "status"),
    )

    conversation_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sender_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    receiver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    buyer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    price: Mapped[int] = mapped_column(nullable=False)
    delivery_days: Mapped[int] = mapped_column(nullable=False)
    included_work: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # [{"name": ..., "price": ..., "due_date": ...}]
    milestones: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    status: Mapped[OfferStatus] = mapped_column(
        String(20),
        default=OfferStatus.PENDING,
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Offer {self.id} {self.price} {self.status}>"
