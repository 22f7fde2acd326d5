"""
Configuration schema (``market_config.schema``).

Frozen dataclasses describing one marketplace configuration set.  The YAML
in ``sets/`` is parsed into these by ``market_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FeeSettings:
    """Fixed and proportional fees, all in the smallest currency unit."""

    topup_fee: int = 20
    payout_fee: int = 20
    order_fee_bps: int = 2000
    consultation_fee: int = 100


@dataclass(frozen=True)
class NegotiationSettings:
    price_floor: int = 500
    max_delivery_days: int = 365
    auto_reject_sibling_proposals: bool = False


@dataclass(frozen=True)
class MarketplaceSettings:
    """
    One complete, validated configuration set.

    ``checksum`` is the SHA-256 of the canonical source data; it identifies
    the configuration in the ``MARKET_CONFIG_TRACE`` log entry.
    """

    config_id: str
    version: int
    currency: str
    fees: FeeSettings = field(default_factory=FeeSettings)
    negotiation: NegotiationSettings = field(default_factory=NegotiationSettings)
    checksum: str = ""

    # Flat accessors for the values callers reach for most.

    @property
    def price_floor(self) -> int:
        return self.negotiation.price_floor

    @property
    def topup_fee(self) -> int:
        return self.fees.topup_fee

    @property
    def payout_fee(self) -> int:
        return self.fees.payout_fee

    @property
    def order_fee_bps(self) -> int:
        return self.fees.order_fee_bps

    @property
    def consultation_fee(self) -> int:
        return self.fees.consultation_fee

    @property
    def max_delivery_days(self) -> int:
        return self.negotiation.max_delivery_days

    @property
    def auto_reject_sibling_proposals(self) -> bool:
        return self.negotiation.auto_reject_sibling_proposals
