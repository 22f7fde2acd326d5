"""
market_services.marketplace -- transactional facade over the kernel.

Responsibility:
    One method per user-facing operation.  Each call is one unit of work:
    a fresh session from ``session_scope`` (commit on success, rollback on
    any exception), one ``MarketOrchestrator``, and, only after the commit,
    dispatch of the events the kernel buffered.

Architecture position:
    Services -- the outermost layer this repository ships.  HTTP handlers,
    job runners and tests call this; they never construct kernel services
    themselves.

Invariants enforced:
    - Accepting a proposal or offer and opening its escrowed order is one
      atomic unit: if the hold fails, the acceptance rolls back with it.
    - Nobody is notified about a change that was rolled back.
    - Notification failures are logged and never fail a committed call.

Usage:
    from market_config import get_active_config
    from market_config.bridges import build_market_policy
    from market_kernel.db.engine import get_session_factory

    market = Marketplace(get_session_factory(), build_market_policy(get_active_config()))
    market.bootstrap(system_id)
    market.open_wallet(buyer_id)
"""

from __future__ import annotations

from collections.abc import Generator, Sequence
from contextlib import contextmanager
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from market_kernel.db.engine import session_scope
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.domain.dtos import (
    AccountInfo,
    ConsultationInfo,
    DeadlineInfo,
    LedgerOperation,
    OfferInfo,
    OrderInfo,
    ProposalInfo,
    WorkRequestInfo,
)
from market_kernel.domain.events import EventBuffer, Notifier
from market_kernel.domain.policy import MarketPolicy
from market_kernel.domain.terms import Actor, DisputeOutcome, Milestone
from market_kernel.logging_config import LogContext, get_logger
from market_services.notifications import dispatch
from market_services.orchestrator import MarketOrchestrator

logger = get_logger("services.marketplace")


class Marketplace:
    """
    Contract:
        Every public method commits its own transaction and returns frozen
        DTOs.  Kernel exceptions propagate unchanged after rollback.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy: MarketPolicy,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._factory = session_factory
        self.policy = policy
        self.notifier = notifier
        self.clock = clock or SystemClock()

    @contextmanager
    def _unit_of_work(
        self, operation: str, correlation_id: str | None = None
    ) -> Generator[MarketOrchestrator, None, None]:
        events = EventBuffer()
        with LogContext.bind(correlation_id=correlation_id or str(uuid4())):
            with session_scope(self._factory) as session:
                yield MarketOrchestrator(session, self.policy, self.clock, events)
            committed = events.drain()
            delivered = dispatch(committed, self.notifier)
            logger.info(
                "unit_of_work_committed",
                extra={
                    "operation": operation,
                    "events": [e.name.value for e in committed],
                    "delivered": delivered,
                },
            )

    # =========================================================================
    # Wallets
    # =========================================================================

    def bootstrap(self, actor_id: UUID) -> tuple[AccountInfo, AccountInfo]:
        """Create the escrow and revenue accounts.  Safe to call repeatedly."""
        with self._unit_of_work("bootstrap") as kernel:
            return kernel.ledger.ensure_system_accounts(actor_id)

    def open_wallet(self, owner_id: UUID, actor_id: UUID | None = None) -> AccountInfo:
        with self._unit_of_work("open_wallet") as kernel:
            return kernel.ledger.open_account(owner_id, actor_id or owner_id)

    def top_up(
        self,
        user_id: UUID,
        amount: int,
        payment_method: str | None = None,
        reference: str | None = None,
    ) -> LedgerOperation:
        with self._unit_of_work("top_up") as kernel:
            account = kernel.ledger.account_for_owner(user_id)
            return kernel.ledger.top_up(
                account.id, amount, user_id, payment_method=payment_method, reference=reference
            )

    def withdraw(self, user_id: UUID, amount: int, reference: str | None = None) -> LedgerOperation:
        with self._unit_of_work("withdraw") as kernel:
            account = kernel.ledger.account_for_owner(user_id)
            return kernel.ledger.withdraw(account.id, amount, user_id, reference=reference)

    def freeze_wallet(self, owner_id: UUID, actor_id: UUID) -> AccountInfo:
        with self._unit_of_work("freeze_wallet") as kernel:
            account = kernel.ledger.account_for_owner(owner_id)
            return kernel.ledger.freeze_account(account.id, actor_id)

    def unfreeze_wallet(self, owner_id: UUID, actor_id: UUID) -> AccountInfo:
        with self._unit_of_work("unfreeze_wallet") as kernel:
            account = kernel.ledger.account_for_owner(owner_id)
            return kernel.ledger.unfreeze_account(account.id, actor_id)

    def balance(self, owner_id: UUID) -> int:
        with self._unit_of_work("balance") as kernel:
            return kernel.ledger_reader.balance_for_owner(owner_id)

    # =========================================================================
    # Consultations
    # =========================================================================

    def pay_consultation(self, user_id: UUID, conversation_id: str) -> ConsultationInfo:
        with self._unit_of_work("pay_consultation") as kernel:
            return kernel.ledger.pay_consultation(user_id, conversation_id, user_id)

    def schedule_consultation(
        self,
        user_id: UUID,
        conversation_id: str,
        meeting_link: str,
        meeting_at: datetime | None = None,
    ) -> ConsultationInfo:
        with self._unit_of_work("schedule_consultation") as kernel:
            return kernel.ledger.use_consultation(
                user_id, conversation_id, meeting_link, meeting_at, user_id
            )

    # =========================================================================
    # Work requests and proposals
    # =========================================================================

    def post_request(
        self,
        actor: Actor,
        title: str,
        description: str,
        budget_min: int,
        budget_max: int,
        deadline: str | None = None,
        skills: Sequence[str] = (),
    ) -> WorkRequestInfo:
        with self._unit_of_work("post_request") as kernel:
            return kernel.negotiation.post_request(
                actor, title, description, budget_min, budget_max, deadline, skills
            )

    def submit_proposal(
        self,
        request_id: UUID,
        actor: Actor,
        price: int,
        delivery_days: int,
        message: str | None = None,
    ) -> ProposalInfo:
        with self._unit_of_work("submit_proposal") as kernel:
            return kernel.negotiation.submit_proposal(
                request_id, actor, price, delivery_days, message
            )

    def accept_proposal(self, request_id: UUID, proposal_id: UUID, actor: Actor) -> OrderInfo:
        """Accept a proposal and open its escrowed order in one transaction."""
        with self._unit_of_work("accept_proposal") as kernel:
            term = kernel.negotiation.accept_proposal(request_id, proposal_id, actor)
            return kernel.orders.open(term, actor)

    def reject_proposal(self, request_id: UUID, proposal_id: UUID, actor: Actor) -> ProposalInfo:
        with self._unit_of_work("reject_proposal") as kernel:
            return kernel.negotiation.reject_proposal(request_id, proposal_id, actor)

    def close_request(self, request_id: UUID, actor: Actor) -> WorkRequestInfo:
        with self._unit_of_work("close_request") as kernel:
            return kernel.negotiation.close_request(request_id, actor)

    def request(self, request_id: UUID) -> WorkRequestInfo:
        with self._unit_of_work("request") as kernel:
            return kernel.negotiation_reader.request(request_id)

    # =========================================================================
    # Offers and packages
    # =========================================================================

    def create_offer(
        self,
        actor: Actor,
        receiver_id: UUID,
        conversation_id: str,
        price: int,
        delivery_days: int,
        included_work: str | None = None,
        milestones: Sequence[Milestone] = (),
        expires_at: datetime | None = None,
    ) -> OfferInfo:
        with self._unit_of_work("create_offer") as kernel:
            return kernel.negotiation.create_offer(
                actor, receiver_id, conversation_id, price, delivery_days,
                included_work=included_work, milestones=milestones, expires_at=expires_at,
            )

    def accept_offer(self, offer_id: UUID, actor: Actor) -> OrderInfo:
        """Accept an offer and open its escrowed order in one transaction."""
        with self._unit_of_work("accept_offer") as kernel:
            term = kernel.negotiation.accept_offer(offer_id, actor)
            return kernel.orders.open(term, actor)

    def reject_offer(self, offer_id: UUID, actor: Actor) -> OfferInfo:
        with self._unit_of_work("reject_offer") as kernel:
            return kernel.negotiation.reject_offer(offer_id, actor)

    def expire_offer(self, offer_id: UUID, actor_id: UUID) -> OfferInfo:
        with self._unit_of_work("expire_offer") as kernel:
            return kernel.negotiation.expire_offer(offer_id, actor_id)

    def buy_package(
        self,
        buyer: Actor,
        seller_id: UUID,
        package_label: str,
        price: int,
        delivery_days: int,
        package_id: UUID | None = None,
    ) -> OrderInfo:
        with self._unit_of_work("buy_package") as kernel:
            term = kernel.negotiation.package_term(
                buyer, seller_id, package_label, price, delivery_days, package_id=package_id
            )
            return kernel.orders.open(term, buyer)

    # =========================================================================
    # Orders and disputes
    # =========================================================================

    def submit_work(
        self,
        order_id: UUID,
        actor: Actor,
        message: str,
        links: Sequence[str] = (),
        files: Sequence[str] = (),
    ) -> OrderInfo:
        with self._unit_of_work("submit_work") as kernel:
            return kernel.orders.submit_work(order_id, actor, message, links, files)

    def complete_order(
        self,
        order_id: UUID,
        actor: Actor,
        rating: int | None = None,
        review: str | None = None,
    ) -> OrderInfo:
        with self._unit_of_work("complete_order") as kernel:
            return kernel.orders.complete(order_id, actor, rating=rating, review=review)

    def raise_dispute(
        self,
        order_id: UUID,
        actor: Actor,
        reason: str,
        evidence: Sequence[str] = (),
    ) -> OrderInfo:
        with self._unit_of_work("raise_dispute") as kernel:
            return kernel.orders.raise_dispute(order_id, actor, reason, evidence)

    def resolve_dispute(
        self,
        order_id: UUID,
        arbiter: Actor,
        outcome: DisputeOutcome,
        note: str | None = None,
    ) -> OrderInfo:
        with self._unit_of_work("resolve_dispute") as kernel:
            return kernel.disputes.resolve(order_id, arbiter, outcome, note)

    def order(self, order_id: UUID) -> OrderInfo:
        with self._unit_of_work("order") as kernel:
            return kernel.order_reader.get(order_id)

    def deadline(self, order_id: UUID) -> DeadlineInfo:
        with self._unit_of_work("deadline") as kernel:
            return kernel.orders.deadline(order_id)
