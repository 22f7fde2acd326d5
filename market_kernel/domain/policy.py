"""
MarketPolicy -- the fee and negotiation rules the kernel enforces.

Architecture position:
    Kernel > Domain -- pure value object.  Built from configuration by
    ``market_config.bridges.build_market_policy``; the kernel never reads
    configuration files itself.

All money values are integers in the smallest currency unit.
"""

from __future__ import annotations

from dataclasses import dataclass

from market_kernel.db.types import BPS_DENOMINATOR, apply_bps


@dataclass(frozen=True)
class MarketPolicy:
    """
    Contract:
        Frozen; validated at construction.

    Guarantees:
        - All fees are non-negative.
        - 0 <= order_fee_bps <= 10000.
        - max_delivery_days is at least one day.
    """

    currency: str = "EGP"
    price_floor: int = 500
    topup_fee: int = 20
    payout_fee: int = 20
    order_fee_bps: int = 2000
    consultation_fee: int = 100
    max_delivery_days: int = 365
    auto_reject_sibling_proposals: bool = False

    def __post_init__(self) -> None:
        for name in ("price_floor", "topup_fee", "payout_fee", "consultation_fee"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
        if not 0 <= self.order_fee_bps <= BPS_DENOMINATOR:
            raise ValueError(
                f"order_fee_bps must be between 0 and {BPS_DENOMINATOR}, got {self.order_fee_bps}"
            )
        if self.consultation_fee == 0:
            raise ValueError("consultation_fee must be positive")
        if not isinstance(self.max_delivery_days, int) or self.max_delivery_days < 1:
            raise ValueError(f"max_delivery_days must be at least 1, got {self.max_delivery_days!r}")

    def order_fee(self, amount: int) -> int:
        """Platform fee on an order, fixed once at order creation."""
        return apply_bps(amount, self.order_fee_bps)
