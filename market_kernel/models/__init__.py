"""SQLAlchemy ORM models for the market kernel."""

from market_kernel.models.account import (
    ESCROW_ACCOUNT_CODE,
    REVENUE_ACCOUNT_CODE,
    AccountKind,
    WalletAccount,
    user_account_code,
)
from market_kernel.models.consultation import ConsultationPayment
from market_kernel.models.negotiation import (
    Offer,
    OfferStatus,
    Proposal,
    ProposalStatus,
    WorkRequest,
    WorkRequestStatus,
)
from market_kernel.models.order import Order, OrderDispute, OrderStatus
from market_kernel.models.transaction import (
    LedgerTransaction,
    TransactionKind,
    TransactionStatus,
)

__all__ = [
    "WalletAccount",
    "AccountKind",
    "ESCROW_ACCOUNT_CODE",
    "REVENUE_ACCOUNT_CODE",
    "user_account_code",
    "LedgerTransaction",
    "TransactionKind",
    "TransactionStatus",
    "WorkRequest",
    "WorkRequestStatus",
    "Proposal",
    "ProposalStatus",
    "Offer",
    "OfferStatus",
    "Order",
    "OrderStatus",
    "OrderDispute",
    "ConsultationPayment",
]
