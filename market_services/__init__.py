"""Service layer: the transactional marketplace facade and event delivery."""

from market_services.marketplace import Marketplace
from market_services.notifications import (
    PresenceAwareNotifier,
    RecordingNotifier,
    dispatch,
)
from market_services.orchestrator import MarketOrchestrator

__all__ = [
    "Marketplace",
    "MarketOrchestrator",
    "PresenceAwareNotifier",
    "RecordingNotifier",
    "dispatch",
]
