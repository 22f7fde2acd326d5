"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable snapshots handed across the service boundary.  Services accept
    and return these, never ORM entities, so callers cannot mutate persisted
    state behind the ledger's back.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ``from_model()`` class methods are boundary converters invoked only from
    services and selectors.

Status and kind fields hold the plain string value of the matching enum in
``market_kernel.models``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from market_kernel.domain.terms import Milestone, WorkSubmission

if TYPE_CHECKING:
    from market_kernel.models.account import WalletAccount
    from market_kernel.models.consultation import ConsultationPayment
    from market_kernel.models.negotiation import Offer, Proposal, WorkRequest
    from market_kernel.models.order import Order, OrderDispute
    from market_kernel.models.transaction import LedgerTransaction


def _value(v) -> str | None:
    if v is None:
        return None
    return getattr(v, "value", v)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerMetadata:
    """Context recorded on every transaction row of one ledger operation."""

    actor_id: UUID
    order_id: UUID | None = None
    conversation_id: str | None = None
    description: str | None = None
    reference: str | None = None


@dataclass(frozen=True)
class Allocation:
    """One credit leg of a disbursement."""

    account_id: UUID
    amount: int
    kind: str


@dataclass(frozen=True)
class AccountInfo:
    """Snapshot of a wallet account."""

    id: UUID
    code: str
    owner_id: UUID | None
    kind: str
    balance: int
    lifetime_credited: int
    lifetime_debited: int
    version: int
    is_frozen: bool

    @classmethod
    def from_model(cls, model: WalletAccount) -> AccountInfo:
        return cls(
            id=model.id,
            code=model.code,
            owner_id=model.owner_id,
            kind=_value(model.kind),
            balance=model.balance,
            lifetime_credited=model.lifetime_credited,
            lifetime_debited=model.lifetime_debited,
            version=model.version,
            is_frozen=model.is_frozen,
        )


@dataclass(frozen=True)
class TransactionRecord:
    """Snapshot of one ledger row; ``amount`` is signed."""

    id: UUID
    account_id: UUID
    kind: str
    amount: int
    status: str
    balance_after: int
    operation_id: UUID
    occurred_at: datetime
    related_account_id: UUID | None = None
    order_id: UUID | None = None
    conversation_id: str | None = None
    description: str | None = None
    reference: str | None = None

    @property
    def is_credit(self) -> bool:
        return self.amount > 0

    @classmethod
    def from_model(cls, model: LedgerTransaction) -> TransactionRecord:
        return cls(
            id=model.id,
            account_id=model.account_id,
            kind=_value(model.kind),
            amount=model.amount,
            status=_value(model.status),
            balance_after=model.balance_after,
            operation_id=model.operation_id,
            occurred_at=model.occurred_at,
            related_account_id=model.related_account_id,
            order_id=model.order_id,
            conversation_id=model.conversation_id,
            description=model.description,
            reference=model.reference,
        )


@dataclass(frozen=True)
class TransferResult:
    """Rows written by one transfer: source debit, destination credit, optional fee credit."""

    debit: TransactionRecord
    credit: TransactionRecord
    fee: TransactionRecord | None = None

    @property
    def operation_id(self) -> UUID:
        return self.debit.operation_id

    @property
    def records(self) -> tuple[TransactionRecord, ...]:
        rows = (self.debit, self.credit)
        return rows + ((self.fee,) if self.fee is not None else ())


@dataclass(frozen=True)
class LedgerOperation:
    """Rows written by a top-up, withdrawal or other multi-row operation."""

    operation_id: UUID
    records: tuple[TransactionRecord, ...]
    net_amount: int

    def for_account(self, account_id: UUID) -> tuple[TransactionRecord, ...]:
        return tuple(r for r in self.records if r.account_id == account_id)


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProposalInfo:
    id: UUID
    work_request_id: UUID
    position: int
    provider_id: UUID
    price: int
    delivery_days: int
    message: str | None
    status: str
    created_at: datetime | None = None
    decided_at: datetime | None = None

    @classmethod
    def from_model(cls, model: Proposal) -> ProposalInfo:
        return cls(
            id=model.id,
            work_request_id=model.work_request_id,
            position=model.position,
            provider_id=model.provider_id,
            price=model.price,
            delivery_days=model.delivery_days,
            message=model.message,
            status=_value(model.status),
            created_at=model.created_at,
            decided_at=model.decided_at,
        )


@dataclass(frozen=True)
class WorkRequestInfo:
    id: UUID
    requester_id: UUID
    title: str
    description: str
    budget_min: int
    budget_max: int
    deadline: str | None
    skills: tuple[str, ...]
    status: str
    proposals: tuple[ProposalInfo, ...] = ()

    @classmethod
    def from_model(cls, model: WorkRequest, include_proposals: bool = True) -> WorkRequestInfo:
        proposals: tuple[ProposalInfo, ...] = ()
        if include_proposals:
            proposals = tuple(ProposalInfo.from_model(p) for p in model.proposals)
        return cls(
            id=model.id,
            requester_id=model.requester_id,
            title=model.title,
            description=model.description,
            budget_min=model.budget_min,
            budget_max=model.budget_max,
            deadline=model.deadline,
            skills=tuple(model.skills or ()),
            status=_value(model.status),
            proposals=proposals,
        )


@dataclass(frozen=True)
class OfferInfo:
    id: UUID
    conversation_id: str
    sender_id: UUID
    receiver_id: UUID
    buyer_id: UUID
    seller_id: UUID
    price: int
    delivery_days: int
    included_work: str | None
    milestones: tuple[Milestone, ...]
    status: str
    expires_at: datetime | None = None
    accepted_at: datetime | None = None

    @classmethod
    def from_model(cls, model: Offer) -> OfferInfo:
        return cls(
            id=model.id,
            conversation_id=model.conversation_id,
            sender_id=model.sender_id,
            receiver_id=model.receiver_id,
            buyer_id=model.buyer_id,
            seller_id=model.seller_id,
            price=model.price,
            delivery_days=model.delivery_days,
            included_work=model.included_work,
            milestones=tuple(Milestone.from_dict(m) for m in (model.milestones or ())),
            status=_value(model.status),
            expires_at=model.expires_at,
            accepted_at=model.accepted_at,
        )


# ---------------------------------------------------------------------------
# Orders and disputes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DisputeInfo:
    id: UUID
    order_id: UUID
    raised_by_id: UUID
    reason: str
    evidence: tuple[str, ...]
    raised_at: datetime
    outcome: str | None = None
    seller_share_bps: int | None = None
    note: str | None = None
    resolved_by_id: UUID | None = None
    resolved_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.outcome is not None

    @classmethod
    def from_model(cls, model: OrderDispute) -> DisputeInfo:
        return cls(
            id=model.id,
            order_id=model.order_id,
            raised_by_id=model.raised_by_id,
            reason=model.reason,
            evidence=tuple(model.evidence or ()),
            raised_at=model.raised_at,
            outcome=model.outcome,
            seller_share_bps=model.seller_share_bps,
            note=model.note,
            resolved_by_id=model.resolved_by_id,
            resolved_at=model.resolved_at,
        )


@dataclass(frozen=True)
class OrderInfo:
    id: UUID
    buyer_id: UUID
    seller_id: UUID
    amount: int
    platform_fee: int
    status: str
    origin_kind: str
    origin_id: UUID | None
    delivery_due_at: datetime
    work_request_id: UUID | None = None
    conversation_id: str | None = None
    package_label: str | None = None
    submission: WorkSubmission | None = None
    completed_at: datetime | None = None
    rating: int | None = None
    review: str | None = None
    resolution_outcome: str | None = None
    hold_operation_id: UUID | None = None
    created_at: datetime | None = None
    dispute: DisputeInfo | None = None

    @property
    def seller_net(self) -> int:
        return self.amount - self.platform_fee

    @classmethod
    def from_model(cls, model: Order, dispute: OrderDispute | None = None) -> OrderInfo:
        submission = None
        if model.submission_message is not None:
            submission = WorkSubmission(
                message=model.submission_message,
                links=tuple(model.submission_links or ()),
                files=tuple(model.submission_files or ()),
                submitted_at=model.submitted_at,
                updated_at=model.submission_updated_at,
            )
        return cls(
            id=model.id,
            buyer_id=model.buyer_id,
            seller_id=model.seller_id,
            amount=model.amount,
            platform_fee=model.platform_fee,
            status=_value(model.status),
            origin_kind=_value(model.origin_kind),
            origin_id=model.origin_id,
            delivery_due_at=model.delivery_due_at,
            work_request_id=model.work_request_id,
            conversation_id=model.conversation_id,
            package_label=model.package_label,
            submission=submission,
            completed_at=model.completed_at,
            rating=model.rating,
            review=model.review,
            resolution_outcome=model.resolution_outcome,
            hold_operation_id=model.hold_operation_id,
            created_at=model.created_at,
            dispute=DisputeInfo.from_model(dispute) if dispute is not None else None,
        )


@dataclass(frozen=True)
class DeadlineInfo:
    """Informational delivery countdown; nothing acts on it automatically."""

    order_id: UUID
    due_at: datetime
    remaining: timedelta
    overdue: bool
    status: str


@dataclass(frozen=True)
class ConsultationInfo:
    id: UUID
    user_id: UUID
    conversation_id: str
    amount: int
    used: bool
    transaction_id: UUID
    meeting_link: str | None = None
    meeting_at: datetime | None = None
    scheduled_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ConsultationPayment) -> ConsultationInfo:
        return cls(
            id=model.id,
            user_id=model.user_id,
            conversation_id=model.conversation_id,
            amount=model.amount,
            used=model.used,
            transaction_id=model.transaction_id,
            meeting_link=model.meeting_link,
            meeting_at=model.meeting_at,
            scheduled_at=model.scheduled_at,
        )


@dataclass(frozen=True)
class SellerPerformance:
    """Aggregate track record of a provider across completed orders."""

    seller_id: UUID
    completed_orders: int
    average_rating: float | None
    on_time_rate: float | None
    total_earned: int = 0
    ratings: tuple[int, ...] = field(default=())
