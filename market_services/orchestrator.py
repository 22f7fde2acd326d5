"""
market_services.orchestrator -- DI container for kernel services.

Responsibility:
    Creates every kernel service exactly once for one unit of work and wires
    them together over a shared session, clock and event buffer.

Architecture position:
    Services -- sits above ``market_kernel`` and ``market_config``.

Invariants enforced:
    - Single-instance lifecycle: one WalletLedger, one NegotiationService,
      one OrderService and one DisputeService per orchestrator.
    - Every service records into the same ``EventBuffer``, so the caller
      dispatches one ordered batch after commit.

Usage:
    with session_scope(factory) as session:
        kernel = MarketOrchestrator(session, policy, clock)
        term = kernel.negotiation.accept_proposal(request_id, proposal_id, actor)
        kernel.orders.open(term, actor)
    dispatch(kernel.events.drain(), notifier)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.domain.events import EventBuffer
from market_kernel.domain.policy import MarketPolicy
from market_kernel.selectors import LedgerSelector, NegotiationSelector, OrderSelector
from market_kernel.services import (
    DisputeService,
    NegotiationService,
    OrderService,
    WalletLedger,
)


class MarketOrchestrator:
    """Central factory for kernel services.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
        - Does NOT dispatch events.
    """

    def __init__(
        self,
        session: Session,
        policy: MarketPolicy,
        clock: Clock | None = None,
        events: EventBuffer | None = None,
    ) -> None:
        self.session = session
        self.policy = policy
        self.clock = clock or SystemClock()
        self.events = events if events is not None else EventBuffer()

        # Construction order follows the dependency graph
        self.ledger = WalletLedger(session, policy, self.clock, self.events)
        self.negotiation = NegotiationService(session, policy, self.clock, self.events)
        self.orders = OrderService(
            session,
            self.ledger,
            policy,
            self.clock,
            self.events,
            negotiation=self.negotiation,
        )
        self.disputes = DisputeService(
            session, self.ledger, self.negotiation, self.clock, self.events
        )

        self.ledger_reader = LedgerSelector(session)
        self.order_reader = OrderSelector(session)
        self.negotiation_reader = NegotiationSelector(session)
