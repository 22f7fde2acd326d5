"""
Order lifecycle: escrow hold at open, work submission, completion.

Money assertions are stated on the buyer, seller, escrow and revenue
accounts together so a leak on any side shows up.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from market_kernel.domain.events import EventName
from market_kernel.domain.terms import Actor
from market_kernel.exceptions import (
    InsufficientFundsError,
    InvalidRatingError,
    NotPartyError,
    NotSellerError,
    OrderNotActiveError,
    OrderNotFoundError,
)
from market_kernel.models.negotiation import WorkRequestStatus
from market_kernel.models.order import OrderStatus


def balances(ledger_selector, buyer, seller):
    return (
        ledger_selector.balance_for_owner(buyer.id),
        ledger_selector.balance_for_owner(seller.id),
        ledger_selector.escrow_exposure().escrow_balance,
        ledger_selector.platform_revenue(),
    )


class TestOpen:

    def test_open_holds_funds(self, open_order, buyer, seller, ledger_selector, events):
        order = open_order(price=1000)

        assert order.status == OrderStatus.ACTIVE.value
        assert order.amount == 1000
        assert order.platform_fee == 200
        assert order.seller_net == 800
        assert balances(ledger_selector, buyer, seller) == (9000, 0, 1000, 0)
        assert ledger_selector.escrow_exposure().matches
        assert EventName.ORDER_OPENED in events.names()

    def test_hold_rows_carry_order_id(self, open_order, ledger_selector):
        order = open_order(price=600)
        rows = ledger_selector.order_transactions(order.id)
        assert sorted(r.amount for r in rows) == [-600, 600]
        assert {r.operation_id for r in rows} == {order.hold_operation_id}

    def test_delivery_due(self, open_order, deterministic_clock):
        order = open_order(delivery_days=3)
        assert order.delivery_due_at == deterministic_clock.now() + timedelta(days=3)

    def test_insufficient_funds_opens_nothing(
        self, negotiation, orders, make_user, seller, order_selector, ledger_selector
    ):
        poor = make_user(Actor.requester, balance=550)
        request = negotiation.post_request(poor, "t", "d", 500, 700)
        proposal = negotiation.submit_proposal(request.id, seller, 600, 3)
        term = negotiation.accept_proposal(request.id, proposal.id, poor)

        with pytest.raises(InsufficientFundsError):
            orders.open(term, poor)

        assert order_selector.as_buyer(poor.id) == []
        assert ledger_selector.balance_for_owner(poor.id) == 550


class TestSubmitWork:

    def test_seller_submits(self, open_order, orders, seller, deterministic_clock, events):
        order = open_order()
        info = orders.submit_work(order.id, seller, "Done", links=("https://x.example",))

        assert info.submission.message == "Done"
        assert info.submission.links == ("https://x.example",)
        assert info.submission.submitted_at == deterministic_clock.now()
        assert EventName.WORK_SUBMITTED in events.names()

    def test_resubmission_keeps_first_time(self, open_order, orders, seller, deterministic_clock):
        order = open_order()
        first = orders.submit_work(order.id, seller, "v1")
        deterministic_clock.advance(3600)
        second = orders.submit_work(order.id, seller, "v2", files=("final.zip",))

        assert second.submission.message == "v2"
        assert second.submission.files == ("final.zip",)
        assert second.submission.submitted_at == first.submission.submitted_at
        assert second.submission.updated_at == deterministic_clock.now()

    def test_only_seller_submits(self, open_order, orders, buyer):
        order = open_order()
        with pytest.raises(NotSellerError):
            orders.submit_work(order.id, buyer, "not mine")

    def test_cannot_submit_after_completion(self, open_order, orders, buyer, seller):
        order = open_order()
        orders.complete(order.id, buyer)
        with pytest.raises(OrderNotActiveError):
            orders.submit_work(order.id, seller, "late")


class TestComplete:

    def test_complete_releases_escrow(
        self, open_order, orders, buyer, seller, ledger_selector, negotiation_selector, events
    ):
        order = open_order(price=1000)

        done = orders.complete(order.id, buyer, rating=5, review="Great")

        assert done.status == OrderStatus.COMPLETED.value
        assert done.rating == 5
        assert done.completed_at is not None
        assert balances(ledger_selector, buyer, seller) == (9000, 800, 0, 200)
        assert ledger_selector.unreconciled() == []
        request = negotiation_selector.request(order.work_request_id)
        assert request.status == WorkRequestStatus.COMPLETED.value
        assert EventName.ORDER_COMPLETED in events.names()

    def test_system_actor_may_complete(self, open_order, orders, system_actor):
        order = open_order()
        assert orders.complete(order.id, system_actor).status == OrderStatus.COMPLETED.value

    def test_seller_cannot_complete(self, open_order, orders, seller):
        order = open_order()
        with pytest.raises(NotPartyError):
            orders.complete(order.id, seller)

    def test_complete_twice(self, open_order, orders, buyer, seller, ledger_selector):
        order = open_order(price=1000)
        orders.complete(order.id, buyer)
        with pytest.raises(OrderNotActiveError):
            orders.complete(order.id, buyer)
        assert ledger_selector.balance_for_owner(seller.id) == 800

    @pytest.mark.parametrize("rating", [0, 6, 4.5])
    def test_invalid_rating_changes_nothing(self, open_order, orders, buyer, rating):
        order = open_order()
        with pytest.raises(InvalidRatingError):
            orders.complete(order.id, buyer, rating=rating)
        assert orders.get(order.id).status == OrderStatus.ACTIVE.value

    def test_unknown_order(self, orders, buyer):
        with pytest.raises(OrderNotFoundError):
            orders.complete(uuid4(), buyer)

    def test_completion_logged(self, open_order, orders, buyer, captured_logs):
        order = open_order()
        orders.complete(order.id, buyer)
        completed = [r for r in captured_logs() if r["message"] == "order_completed"]
        assert completed[0]["order_id"] == str(order.id)
        assert completed[0]["seller_amount"] == 800


class TestDeadline:

    def test_countdown(self, open_order, orders, deterministic_clock):
        order = open_order(delivery_days=2)
        deterministic_clock.advance_days(1)
        info = orders.deadline(order.id)
        assert info.remaining == timedelta(days=1)
        assert not info.overdue

    def test_overdue_is_informational(self, open_order, orders, deterministic_clock):
        order = open_order(delivery_days=2)
        deterministic_clock.advance_days(3)
        info = orders.deadline(order.id)
        assert info.overdue
        assert orders.get(order.id).status == OrderStatus.ACTIVE.value

    def test_completed_order_is_not_overdue(self, open_order, orders, buyer, deterministic_clock):
        order = open_order(delivery_days=1)
        orders.complete(order.id, buyer)
        deterministic_clock.advance_days(5)
        assert not orders.deadline(order.id).overdue
