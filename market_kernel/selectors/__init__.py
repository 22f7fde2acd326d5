"""Selectors for the market kernel (read side)."""

from market_kernel.selectors.base import BaseSelector
from market_kernel.selectors.ledger_selector import (
    AccountReconciliation,
    EscrowExposure,
    LedgerSelector,
)
from market_kernel.selectors.negotiation_selector import NegotiationSelector
from market_kernel.selectors.order_selector import OrderSelector

__all__ = [
    "AccountReconciliation",
    "BaseSelector",
    "EscrowExposure",
    "LedgerSelector",
    "NegotiationSelector",
    "OrderSelector",
]
