"""
Config -> Kernel Bridges.

Converts ``MarketplaceSettings`` into kernel inputs.  This lives in
market_config (the producer) because the kernel must NEVER import
market_config.

Usage:
    from market_config import get_active_config
    from market_config.bridges import build_market_policy

    policy = build_market_policy(get_active_config())
"""

from __future__ import annotations

from market_config.schema import MarketplaceSettings
from market_kernel.domain.policy import MarketPolicy


def build_market_policy(settings: MarketplaceSettings) -> MarketPolicy:
    """Translate a configuration set into the kernel's fee and negotiation rules."""
    return MarketPolicy(
        currency=settings.currency,
        price_floor=settings.price_floor,
        topup_fee=settings.topup_fee,
        payout_fee=settings.payout_fee,
        order_fee_bps=settings.order_fee_bps,
        consultation_fee=settings.consultation_fee,
        max_delivery_days=settings.max_delivery_days,
        auto_reject_sibling_proposals=settings.auto_reject_sibling_proposals,
    )
