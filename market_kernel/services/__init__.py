"""Services for the market kernel (write side)."""

from market_kernel.services.dispute_service import DisputeService
from market_kernel.services.negotiation_service import NegotiationService
from market_kernel.services.order_service import OrderService
from market_kernel.services.wallet_ledger import WalletLedger

__all__ = [
    "DisputeService",
    "NegotiationService",
    "OrderService",
    "WalletLedger",
]
