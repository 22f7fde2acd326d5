"""Direct offers inside a conversation, and package purchase terms."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from market_kernel.domain.events import EventName
from market_kernel.domain.terms import Actor, Milestone, TermOrigin
from market_kernel.exceptions import (
    AlreadyDecidedError,
    BudgetTooLowError,
    InvalidDeliveryWindowError,
    InvalidExpiryError,
    InvalidMilestonesError,
    NotReceiverError,
    OfferExpiredError,
    OfferNotExpiredError,
    OfferNotFoundError,
    RoleNotPermittedError,
    SelfDealingError,
)
from market_kernel.models.negotiation import OfferStatus


@pytest.fixture
def provider():
    return Actor.provider(uuid4())


@pytest.fixture
def client():
    return Actor.requester(uuid4())


@pytest.fixture
def offer(negotiation, provider, client):
    return negotiation.create_offer(
        provider, client.id, "conv-1", 700, 5, included_work="Two revisions"
    )


class TestCreateOffer:

    def test_provider_offer_makes_receiver_the_buyer(self, offer, provider, client, events):
        assert offer.seller_id == provider.id
        assert offer.buyer_id == client.id
        assert offer.status == OfferStatus.PENDING.value
        assert EventName.OFFER_CREATED in events.names()

    def test_requester_offer_makes_sender_the_buyer(self, negotiation, provider, client):
        info = negotiation.create_offer(client, provider.id, "conv-1", 600, 2)
        assert info.buyer_id == client.id
        assert info.seller_id == provider.id

    def test_price_floor(self, negotiation, provider, client):
        with pytest.raises(BudgetTooLowError):
            negotiation.create_offer(provider, client.id, "conv-1", 499, 5)

    def test_self_offer(self, negotiation, provider):
        with pytest.raises(SelfDealingError):
            negotiation.create_offer(provider, provider.id, "conv-1", 700, 5)

    def test_arbiters_cannot_offer(self, negotiation, client):
        with pytest.raises(RoleNotPermittedError):
            negotiation.create_offer(Actor.arbiter(uuid4()), client.id, "conv-1", 700, 5)

    def test_milestones_are_stored(self, negotiation, provider, client):
        milestones = (
            Milestone(name="Wireframes", price=200, due_date="2024-01-05"),
            Milestone(name="Build", price=500),
        )
        info = negotiation.create_offer(
            provider, client.id, "conv-1", 700, 10, milestones=milestones
        )
        assert info.milestones == milestones

    @pytest.mark.parametrize(
        "milestones",
        [
            (Milestone(name="", price=100),),
            (Milestone(name="Build", price=0),),
            (Milestone(name="A", price=400), Milestone(name="B", price=400)),
        ],
    )
    def test_invalid_milestones(self, negotiation, provider, client, milestones):
        with pytest.raises(InvalidMilestonesError):
            negotiation.create_offer(
                provider, client.id, "conv-1", 700, 10, milestones=milestones
            )

    def test_expiry_must_be_in_the_future(self, negotiation, provider, client, deterministic_clock):
        with pytest.raises(InvalidExpiryError):
            negotiation.create_offer(
                provider, client.id, "conv-1", 700, 5, expires_at=deterministic_clock.now()
            )

    def test_naive_expiry_rejected(self, negotiation, provider, client):
        with pytest.raises(InvalidExpiryError) as exc_info:
            negotiation.create_offer(
                provider, client.id, "conv-1", 700, 5, expires_at=datetime(2030, 1, 1)
            )
        assert exc_info.value.reason == "has no timezone"

    def test_long_delivery_window_rejected(self, negotiation, provider, client, policy):
        with pytest.raises(InvalidDeliveryWindowError):
            negotiation.create_offer(
                provider, client.id, "conv-1", 700, policy.max_delivery_days + 1
            )


class TestAcceptOffer:

    def test_receiver_accepts(self, negotiation, offer, provider, client, negotiation_selector, events):
        term = negotiation.accept_offer(offer.id, client)

        assert term.origin_kind == TermOrigin.OFFER
        assert term.origin_id == offer.id
        assert term.conversation_id == "conv-1"
        assert (term.buyer_id, term.seller_id, term.amount) == (client.id, provider.id, 700)
        stored = negotiation_selector.offer(offer.id)
        assert stored.status == OfferStatus.ACCEPTED.value
        assert stored.accepted_at is not None
        assert EventName.OFFER_ACCEPTED in events.names()

    def test_only_receiver_accepts(self, negotiation, offer, provider):
        with pytest.raises(NotReceiverError):
            negotiation.accept_offer(offer.id, provider)

    def test_accepted_once(self, negotiation, offer, client):
        negotiation.accept_offer(offer.id, client)
        with pytest.raises(AlreadyDecidedError):
            negotiation.accept_offer(offer.id, client)

    def test_rejected_offer_cannot_be_accepted(self, negotiation, offer, client):
        rejected = negotiation.reject_offer(offer.id, client)
        assert rejected.status == OfferStatus.REJECTED.value
        with pytest.raises(AlreadyDecidedError):
            negotiation.accept_offer(offer.id, client)

    def test_unknown_offer(self, negotiation, client):
        with pytest.raises(OfferNotFoundError):
            negotiation.accept_offer(uuid4(), client)


class TestOfferExpiry:

    @pytest.fixture
    def expiring(self, negotiation, provider, client, deterministic_clock):
        return negotiation.create_offer(
            provider, client.id, "conv-1", 700, 5,
            expires_at=deterministic_clock.now() + timedelta(hours=1),
        )

    def test_accept_before_expiry(self, negotiation, expiring, client, deterministic_clock):
        deterministic_clock.advance(3599)
        assert negotiation.accept_offer(expiring.id, client).amount == 700

    def test_accept_at_expiry_fails(self, negotiation, expiring, client, deterministic_clock):
        deterministic_clock.advance(3600)
        with pytest.raises(OfferExpiredError):
            negotiation.accept_offer(expiring.id, client)

    def test_expire_after_deadline(self, negotiation, expiring, client, deterministic_clock, test_actor_id):
        deterministic_clock.advance(7200)
        expired = negotiation.expire_offer(expiring.id, test_actor_id)
        assert expired.status == OfferStatus.EXPIRED.value
        with pytest.raises(AlreadyDecidedError):
            negotiation.accept_offer(expiring.id, client)

    def test_cannot_expire_early(self, negotiation, expiring, test_actor_id):
        with pytest.raises(OfferNotExpiredError):
            negotiation.expire_offer(expiring.id, test_actor_id)

    def test_offer_without_expiry_never_expires(self, negotiation, offer, test_actor_id, deterministic_clock):
        deterministic_clock.advance_days(365)
        with pytest.raises(OfferNotExpiredError):
            negotiation.expire_offer(offer.id, test_actor_id)


class TestPackageTerm:

    def test_package_term(self, negotiation, client, provider):
        package_id = uuid4()
        term = negotiation.package_term(client, provider.id, "Standard", 900, 7, package_id)
        assert term.origin_kind == TermOrigin.PACKAGE
        assert term.origin_id == package_id
        assert term.package_label == "Standard"
        assert term.amount == 900

    def test_only_requesters_buy_packages(self, negotiation, provider):
        with pytest.raises(RoleNotPermittedError):
            negotiation.package_term(provider, uuid4(), "Basic", 600, 3)

    def test_package_floor(self, negotiation, client, provider):
        with pytest.raises(BudgetTooLowError):
            negotiation.package_term(client, provider.id, "Tiny", 100, 1)
