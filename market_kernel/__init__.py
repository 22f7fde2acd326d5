"""
Market Kernel - escrow marketplace core

Negotiation-to-payment pipeline with:
- Wallet ledger with append-only transaction history
- Escrow holds and single-shot settlement
- Compare-and-set order and negotiation state machines
- Dispute resolution by arbiters
"""

__version__ = "0.1.0"
