"""
Value objects exchanged between the negotiation, order and dispute stages.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

An ``AcceptedTerm`` is the only thing the order lifecycle needs from a
negotiation: who pays, who delivers, how much, and how fast.  It is the same
whether the deal came from a proposal, an offer, or a fixed-price package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from market_kernel.db.types import BPS_DENOMINATOR
from market_kernel.exceptions import InvalidSplitError


class ActorRole(str, Enum):
    """Role an authenticated caller acts under."""

    REQUESTER = "requester"
    PROVIDER = "provider"
    ARBITER = "arbiter"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller supplied by the identity provider."""

    id: UUID
    role: ActorRole

    @property
    def is_arbiter(self) -> bool:
        return self.role == ActorRole.ARBITER

    @property
    def is_system(self) -> bool:
        return self.role == ActorRole.SYSTEM

    @classmethod
    def requester(cls, actor_id: UUID) -> Actor:
        return cls(id=actor_id, role=ActorRole.REQUESTER)

    @classmethod
    def provider(cls, actor_id: UUID) -> Actor:
        return cls(id=actor_id, role=ActorRole.PROVIDER)

    @classmethod
    def arbiter(cls, actor_id: UUID) -> Actor:
        return cls(id=actor_id, role=ActorRole.ARBITER)

    @classmethod
    def system(cls, actor_id: UUID) -> Actor:
        return cls(id=actor_id, role=ActorRole.SYSTEM)


class TermOrigin(str, Enum):
    """Where an accepted term was agreed."""

    PROPOSAL = "proposal"
    OFFER = "offer"
    PACKAGE = "package"


@dataclass(frozen=True)
class AcceptedTerm:
    """
    A binding agreement, ready to become an order.

    Guarantees:
        - amount is a positive integer in the smallest currency unit.
        - buyer_id != seller_id.
    """

    buyer_id: UUID
    seller_id: UUID
    amount: int
    delivery_days: int
    origin_kind: TermOrigin
    origin_id: UUID | None
    accepted_at: datetime
    work_request_id: UUID | None = None
    conversation_id: str | None = None
    package_label: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.amount, int) or isinstance(self.amount, bool) or self.amount <= 0:
            raise ValueError(f"AcceptedTerm amount must be a positive int, got {self.amount!r}")
        if self.buyer_id == self.seller_id:
            raise ValueError("AcceptedTerm buyer and seller must differ")


@dataclass(frozen=True)
class Milestone:
    """One payment stage of an offer."""

    name: str
    price: int
    due_date: str | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "price": self.price, "due_date": self.due_date}

    @classmethod
    def from_dict(cls, data: dict) -> Milestone:
        return cls(
            name=data["name"],
            price=data["price"],
            due_date=data.get("due_date"),
        )


@dataclass(frozen=True)
class WorkSubmission:
    """Delivery the seller hands in; files and links are already hosted."""

    message: str
    links: tuple[str, ...] = ()
    files: tuple[str, ...] = ()
    submitted_at: datetime | None = None
    updated_at: datetime | None = None


class OutcomeKind(str, Enum):
    RELEASE_TO_SELLER = "release_to_seller"
    REFUND_TO_BUYER = "refund_to_buyer"
    SPLIT = "split"


@dataclass(frozen=True)
class DisputeOutcome:
    """
    Arbiter's decision on a disputed order.

    ``seller_share_bps`` is the part of the escrowed amount that goes to the
    seller side (before the platform fee share); the rest is refunded.
    """

    kind: OutcomeKind
    seller_share_bps: int = field(default=BPS_DENOMINATOR)

    def __post_init__(self) -> None:
        bps = self.seller_share_bps
        if not isinstance(bps, int) or isinstance(bps, bool) or not 0 <= bps <= BPS_DENOMINATOR:
            raise InvalidSplitError(bps)
        if self.kind == OutcomeKind.RELEASE_TO_SELLER and bps != BPS_DENOMINATOR:
            raise InvalidSplitError(bps)
        if self.kind == OutcomeKind.REFUND_TO_BUYER and bps != 0:
            raise InvalidSplitError(bps)

    @classmethod
    def release_to_seller(cls) -> DisputeOutcome:
        return cls(kind=OutcomeKind.RELEASE_TO_SELLER, seller_share_bps=BPS_DENOMINATOR)

    @classmethod
    def refund_to_buyer(cls) -> DisputeOutcome:
        return cls(kind=OutcomeKind.REFUND_TO_BUYER, seller_share_bps=0)

    @classmethod
    def split(cls, seller_share_bps: int) -> DisputeOutcome:
        return cls(kind=OutcomeKind.SPLIT, seller_share_bps=seller_share_bps)

    @property
    def label(self) -> str:
        if self.kind == OutcomeKind.SPLIT:
            return f"split:{self.seller_share_bps}"
        return self.kind.value


@dataclass(frozen=True)
class Settlement:
    """Integer allocation of an escrowed amount between the three parties."""

    seller_amount: int
    platform_amount: int
    buyer_refund: int

    @property
    def total(self) -> int:
        return self.seller_amount + self.platform_amount + self.buyer_refund


def settle(amount: int, platform_fee: int, outcome: DisputeOutcome | None = None) -> Settlement:
    """
    Split an escrowed ``amount`` that carries ``platform_fee``.

    Without an outcome (normal completion) the seller gets amount - fee and
    the platform gets the fee.  With an outcome the seller side is scaled by
    ``seller_share_bps`` with floor rounding and the buyer gets the rest, so
    the three parts always add up to ``amount``.
    """
    bps = BPS_DENOMINATOR if outcome is None else outcome.seller_share_bps
    seller_gross = amount * bps // BPS_DENOMINATOR
    fee_share = platform_fee * bps // BPS_DENOMINATOR
    return Settlement(
        seller_amount=seller_gross - fee_share,
        platform_amount=fee_share,
        buyer_refund=amount - seller_gross,
    )
