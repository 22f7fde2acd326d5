"""
Marketplace facade: one committed unit of work per call.

These tests use the committing ``session_factory`` and never the
rollback ``session`` fixture, so every call runs in its own transaction
exactly as it would in production.
"""

from uuid import uuid4

import pytest

from market_kernel.domain.terms import Actor, DisputeOutcome
from market_kernel.exceptions import (
    AccountFrozenError,
    InsufficientFundsError,
    OfferNotFoundError,
)
from market_kernel.models.negotiation import ProposalStatus, WorkRequestStatus
from market_kernel.models.order import OrderStatus
from market_services import Marketplace, RecordingNotifier

SYSTEM_ID = uuid4()


class ExplodingNotifier:
    def __init__(self):
        self.calls = 0

    def notify(self, event):
        self.calls += 1
        raise RuntimeError("push gateway down")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def market(session_factory, policy, deterministic_clock, notifier):
    m = Marketplace(session_factory, policy, notifier=notifier, clock=deterministic_clock)
    m.bootstrap(SYSTEM_ID)
    return m


@pytest.fixture
def new_user(market):
    def _make(role_factory=Actor.requester, top_up=0):
        actor = role_factory(uuid4())
        market.open_wallet(actor.id)
        if top_up:
            market.top_up(actor.id, top_up, payment_method="card")
        return actor

    return _make


class TestWallets:

    def test_top_up_and_withdraw(self, market, new_user):
        user = new_user(top_up=1020)
        assert market.balance(user.id) == 1000

        op = market.withdraw(user.id, 500)
        assert op.net_amount == 480
        assert market.balance(user.id) == 500

    def test_bootstrap_is_repeatable(self, market):
        escrow, revenue = market.bootstrap(SYSTEM_ID)
        assert escrow.code == "platform:escrow"
        assert revenue.balance == 0

    def test_freeze_blocks_withdrawal(self, market, new_user):
        user = new_user(top_up=1020)
        market.freeze_wallet(user.id, SYSTEM_ID)
        with pytest.raises(AccountFrozenError):
            market.withdraw(user.id, 100)
        market.unfreeze_wallet(user.id, SYSTEM_ID)
        market.withdraw(user.id, 100)

    def test_consultation(self, market, new_user):
        user = new_user(top_up=220)
        market.pay_consultation(user.id, "conv-1")
        info = market.schedule_consultation(user.id, "conv-1", "https://meet.example/1")
        assert info.used
        assert market.balance(user.id) == 100


class TestProposalToOrder:

    def test_full_flow(self, market, new_user, notifier):
        buyer = new_user(top_up=1020)
        seller = new_user(Actor.provider)
        request = market.post_request(buyer, "Logo", "Bakery logo", 500, 800)
        proposal = market.submit_proposal(request.id, seller, 600, 3, "Happy to help")

        order = market.accept_proposal(request.id, proposal.id, buyer)

        assert order.status == OrderStatus.ACTIVE.value
        assert market.balance(buyer.id) == 400
        assert market.request(request.id).status == WorkRequestStatus.IN_PROGRESS.value

        market.submit_work(order.id, seller, "Final files", links=("https://files.example/1",))
        done = market.complete_order(order.id, buyer, rating=4)

        assert done.status == OrderStatus.COMPLETED.value
        assert market.balance(seller.id) == 480
        assert market.request(request.id).status == WorkRequestStatus.COMPLETED.value
        assert notifier.names()[-1] == "order_completed"
        assert "proposal_accepted" in [e.name.value for e in notifier.for_recipient(seller.id)]

    def test_failed_hold_rolls_back_acceptance(self, market, new_user, notifier):
        buyer = new_user(top_up=520)
        seller = new_user(Actor.provider)
        request = market.post_request(buyer, "Logo", "d", 500, 800)
        proposal = market.submit_proposal(request.id, seller, 700, 3)
        notified_before = len(notifier.events)

        with pytest.raises(InsufficientFundsError):
            market.accept_proposal(request.id, proposal.id, buyer)

        stored = market.request(request.id)
        assert stored.status == WorkRequestStatus.OPEN.value
        assert stored.proposals[0].status == ProposalStatus.PENDING.value
        assert market.balance(buyer.id) == 500
        assert len(notifier.events) == notified_before

    def test_dispute_through_facade(self, market, new_user):
        buyer = new_user(top_up=1020)
        seller = new_user(Actor.provider)
        request = market.post_request(buyer, "Logo", "d", 500, 800)
        proposal = market.submit_proposal(request.id, seller, 1000, 3)
        order = market.accept_proposal(request.id, proposal.id, buyer)

        market.raise_dispute(order.id, seller, "Buyer silent", evidence=("log.txt",))
        resolved = market.resolve_dispute(
            order.id, Actor.arbiter(uuid4()), DisputeOutcome.refund_to_buyer()
        )

        assert resolved.dispute.outcome == "refund_to_buyer"
        assert market.balance(buyer.id) == 1000
        assert market.order(order.id).status == OrderStatus.COMPLETED.value


class TestOffersAndPackages:

    def test_offer_to_order(self, market, new_user):
        buyer = new_user(top_up=1020)
        seller = new_user(Actor.provider)
        offer = market.create_offer(seller, buyer.id, "conv-7", 900, 4, included_work="Logo")

        order = market.accept_offer(offer.id, buyer)

        assert order.origin_kind == "offer"
        assert order.conversation_id == "conv-7"
        assert market.balance(buyer.id) == 100
        assert market.deadline(order.id).remaining.days == 4

    def test_rejected_offer(self, market, new_user):
        buyer = new_user()
        seller = new_user(Actor.provider)
        offer = market.create_offer(seller, buyer.id, "conv-7", 900, 4)
        assert market.reject_offer(offer.id, buyer).status == "rejected"

    def test_unknown_offer(self, market, new_user):
        with pytest.raises(OfferNotFoundError):
            market.accept_offer(uuid4(), new_user())

    def test_buy_package(self, market, new_user):
        buyer = new_user(top_up=1020)
        seller = new_user(Actor.provider)
        order = market.buy_package(buyer, seller.id, "Premium", 800, 5)
        assert order.package_label == "Premium"
        assert order.platform_fee == 160
        assert market.balance(buyer.id) == 200


class TestNotificationDelivery:

    def test_failing_notifier_does_not_fail_the_call(
        self, session_factory, policy, deterministic_clock, captured_logs
    ):
        exploding = ExplodingNotifier()
        market = Marketplace(session_factory, policy, notifier=exploding, clock=deterministic_clock)
        market.bootstrap(SYSTEM_ID)
        user = Actor.requester(uuid4())
        market.open_wallet(user.id)

        op = market.top_up(user.id, 120)

        assert op.net_amount == 100
        assert market.balance(user.id) == 100
        assert exploding.calls == 1
        failures = [r for r in captured_logs() if r["message"] == "event_dispatch_failed"]
        assert failures[0]["event"] == "wallet_topped_up"

    def test_unit_of_work_logged(self, market, new_user, captured_logs):
        user = new_user()
        market.top_up(user.id, 120)
        committed = [r for r in captured_logs() if r["message"] == "unit_of_work_committed"]
        assert committed[-1]["operation"] == "top_up"
        assert committed[-1]["events"] == ["wallet_topped_up"]
        assert committed[-1]["delivered"] == 1
        assert "correlation_id" in committed[-1]
