"""
Pure domain layer.

Value objects, workflows and ports with NO dependencies on the ORM, the
database, or wall-clock time.  All domain objects are immutable.
"""

from market_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from market_kernel.domain.dtos import (
    AccountInfo,
    Allocation,
    ConsultationInfo,
    DeadlineInfo,
    DisputeInfo,
    LedgerMetadata,
    LedgerOperation,
    OfferInfo,
    OrderInfo,
    ProposalInfo,
    SellerPerformance,
    TransactionRecord,
    TransferResult,
    WorkRequestInfo,
)
from market_kernel.domain.events import (
    DomainEvent,
    EventBuffer,
    EventName,
    Notifier,
    PresenceProvider,
    UserNotifier,
)
from market_kernel.domain.lifecycles import (
    OFFER_WORKFLOW,
    ORDER_WORKFLOW,
    PROPOSAL_WORKFLOW,
    WORK_REQUEST_WORKFLOW,
)
from market_kernel.domain.terms import (
    AcceptedTerm,
    Actor,
    ActorRole,
    DisputeOutcome,
    Milestone,
    OutcomeKind,
    Settlement,
    TermOrigin,
    WorkSubmission,
    settle,
)
from market_kernel.domain.workflow import Transition, Workflow, next_state

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Workflows
    "Transition",
    "Workflow",
    "next_state",
    "ORDER_WORKFLOW",
    "WORK_REQUEST_WORKFLOW",
    "PROPOSAL_WORKFLOW",
    "OFFER_WORKFLOW",
    # Terms
    "Actor",
    "ActorRole",
    "AcceptedTerm",
    "TermOrigin",
    "Milestone",
    "WorkSubmission",
    "DisputeOutcome",
    "OutcomeKind",
    "Settlement",
    "settle",
    # Events
    "DomainEvent",
    "EventBuffer",
    "EventName",
    "Notifier",
    "PresenceProvider",
    "UserNotifier",
    # DTOs
    "AccountInfo",
    "Allocation",
    "LedgerMetadata",
    "LedgerOperation",
    "TransactionRecord",
    "TransferResult",
    "WorkRequestInfo",
    "ProposalInfo",
    "OfferInfo",
    "OrderInfo",
    "DisputeInfo",
    "DeadlineInfo",
    "ConsultationInfo",
    "SellerPerformance",
]
