"""Read paths: ledger reconciliation, order listings and negotiation lookups."""

from datetime import timedelta
from uuid import uuid4

from market_kernel.domain.terms import Actor, DisputeOutcome
from market_kernel.models.order import OrderStatus
from market_kernel.models.transaction import TransactionKind


class TestLedgerSelector:

    def test_reconcile_single_account(self, ledger, buyer, ledger_selector):
        account_id = ledger.account_for_owner(buyer.id).id
        ledger.withdraw(account_id, 1000, buyer.id)

        rec = ledger_selector.reconcile(account_id)
        assert rec.matches
        assert rec.stored_balance == 9000
        assert rec.transaction_count == 3

    def test_reconcile_all_covers_every_account(self, ledger, buyer, seller, ledger_selector):
        codes = {r.code for r in ledger_selector.reconcile_all()}
        assert {"platform:escrow", "platform:revenue", f"user:{buyer.id}", f"user:{seller.id}"} <= codes
        assert ledger_selector.unreconciled() == []

    def test_history_filters(self, ledger, buyer, ledger_selector):
        account_id = ledger.account_for_owner(buyer.id).id
        ledger.top_up(account_id, 100, buyer.id)

        fees = ledger_selector.history(account_id, kinds=(TransactionKind.FEE.value,))
        assert [r.amount for r in fees] == [-20]
        assert len(ledger_selector.history(account_id, limit=1)) == 1

    def test_operation_rows(self, ledger, buyer, ledger_selector):
        account_id = ledger.account_for_owner(buyer.id).id
        op = ledger.top_up(account_id, 100, buyer.id)
        rows = ledger_selector.operation(op.operation_id)
        assert sum(r.amount for r in rows) == 100

    def test_orders_conserve_money(self, open_order, orders, disputes, buyer, arbiter, ledger_selector):
        before = ledger_selector.total_money()
        first = open_order(price=700)
        second = open_order(price=900)
        orders.complete(first.id, buyer)
        orders.raise_dispute(second.id, buyer, "late")
        disputes.resolve(second.id, arbiter, DisputeOutcome.split(3333))

        assert ledger_selector.total_money() == before
        exposure = ledger_selector.escrow_exposure()
        assert exposure.matches
        assert exposure.open_order_count == 0

    def test_escrow_exposure_tracks_open_orders(self, open_order, ledger_selector):
        open_order(price=600)
        open_order(price=800)
        exposure = ledger_selector.escrow_exposure()
        assert exposure.escrow_balance == 1400
        assert exposure.held_for_orders == 1400
        assert exposure.open_order_count == 2

    def test_canonical_hash_changes_with_ledger(self, ledger, buyer, ledger_selector):
        first = ledger_selector.canonical_hash()
        assert ledger_selector.canonical_hash() == first
        ledger.withdraw(ledger.account_for_owner(buyer.id).id, 100, buyer.id)
        assert ledger_selector.canonical_hash() != first


class TestOrderSelector:

    def test_party_listings(self, open_order, orders, buyer, seller, order_selector):
        a = open_order()
        b = open_order()
        orders.complete(a.id, buyer)

        assert {o.id for o in order_selector.for_party(buyer.id)} == {a.id, b.id}
        assert {o.id for o in order_selector.for_party(seller.id)} == {a.id, b.id}
        completed = order_selector.for_party(seller.id, status=OrderStatus.COMPLETED.value)
        assert [o.id for o in completed] == [a.id]
        assert [o.id for o in order_selector.active()] == [b.id]
        assert order_selector.as_seller(buyer.id) == []

    def test_seller_performance(self, open_order, orders, buyer, seller, order_selector, deterministic_clock):
        on_time = open_order(price=1000, delivery_days=2)
        late = open_order(price=500, delivery_days=1)
        orders.complete(on_time.id, buyer, rating=5)
        deterministic_clock.advance_days(2)
        orders.complete(late.id, buyer, rating=3)

        perf = order_selector.seller_performance(seller.id)
        assert perf.completed_orders == 2
        assert perf.average_rating == 4.0
        assert perf.on_time_rate == 0.5
        assert perf.total_earned == 800 + 400

    def test_performance_without_orders(self, order_selector):
        perf = order_selector.seller_performance(uuid4())
        assert perf.completed_orders == 0
        assert perf.average_rating is None
        assert perf.on_time_rate is None
        assert perf.total_earned == 0


class TestNegotiationSelector:

    def test_open_requests_by_skill(self, negotiation, negotiation_selector):
        owner = Actor.requester(uuid4())
        design = negotiation.post_request(owner, "Logo", "d", 500, 600, skills=("design",))
        negotiation.post_request(owner, "API", "d", 500, 600, skills=("python",))
        closed = negotiation.post_request(owner, "Old", "d", 500, 600, skills=("design",))
        negotiation.close_request(closed.id, owner)

        found = negotiation_selector.open_requests(skill="design")
        assert [r.id for r in found] == [design.id]
        assert found[0].proposals == ()
        assert len(negotiation_selector.requests_by(owner.id)) == 3

    def test_has_applied(self, negotiation, negotiation_selector):
        owner = Actor.requester(uuid4())
        provider = Actor.provider(uuid4())
        request = negotiation.post_request(owner, "Logo", "d", 500, 600)
        assert not negotiation_selector.has_applied(request.id, provider.id)

        proposal = negotiation.submit_proposal(request.id, provider, 550, 2)
        assert negotiation_selector.has_applied(request.id, provider.id)

        negotiation.reject_proposal(request.id, proposal.id, owner)
        assert not negotiation_selector.has_applied(request.id, provider.id)
        assert [p.id for p in negotiation_selector.proposals_by(provider.id)] == [proposal.id]

    def test_offers_in_conversation(self, negotiation, negotiation_selector, deterministic_clock):
        provider = Actor.provider(uuid4())
        client = Actor.requester(uuid4())
        first = negotiation.create_offer(provider, client.id, "conv-9", 600, 3)
        deterministic_clock.advance(60)
        second = negotiation.create_offer(
            provider, client.id, "conv-9", 650, 3,
            expires_at=deterministic_clock.now() + timedelta(days=1),
        )
        negotiation.create_offer(provider, client.id, "conv-other", 600, 3)

        offers = negotiation_selector.offers_in_conversation("conv-9")
        assert {o.id for o in offers} == {first.id, second.id}
