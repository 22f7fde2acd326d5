"""
NegotiationService -- work requests, proposals and offers.

Responsibility:
    Runs both negotiation paths up to the point of agreement and turns the
    agreement into an ``AcceptedTerm``.  Never moves money: the order
    lifecycle opens the escrow hold from the term it receives.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Prices, budgets and offers are never below the platform floor.
    - At most one accepted proposal per work request: acceptance is a
      compare-and-set of the request from open to in_progress, then of the
      proposal from pending to accepted.
    - An offer is decided once: pending -> accepted | rejected | expired by
      compare-and-set.
    - Sibling proposals stay pending after an acceptance unless the policy
      flag ``auto_reject_sibling_proposals`` is set.

Failure modes:
    - BudgetTooLowError, InvalidBudgetRangeError, InvalidDeliveryWindowError,
      InvalidMilestonesError, SelfDealingError (validation).
    - NotOwnerError, NotReceiverError, RoleNotPermittedError (authorization).
    - RequestNotOpenError, DuplicateApplicationError, AlreadyDecidedError,
      OfferExpiredError (state conflicts).
"""

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock
from market_kernel.domain.dtos import OfferInfo, ProposalInfo, WorkRequestInfo
from market_kernel.domain.events import DomainEvent, EventBuffer, EventName
from market_kernel.domain.lifecycles import (
    OFFER_WORKFLOW,
    PROPOSAL_WORKFLOW,
    WORK_REQUEST_WORKFLOW,
)
from market_kernel.domain.policy import MarketPolicy
from market_kernel.domain.terms import AcceptedTerm, Actor, ActorRole, Milestone, TermOrigin
from market_kernel.exceptions import (
    AlreadyDecidedError,
    BudgetTooLowError,
    DuplicateApplicationError,
    InvalidAmountError,
    InvalidBudgetRangeError,
    InvalidDeliveryWindowError,
    InvalidExpiryError,
    InvalidMilestonesError,
    NotOwnerError,
    NotReceiverError,
    OfferExpiredError,
    OfferNotExpiredError,
    OfferNotFoundError,
    ProposalNotFoundError,
    RequestNotOpenError,
    RoleNotPermittedError,
    SelfDealingError,
    WorkRequestNotFoundError,
)
from market_kernel.logging_config import LogContext, get_logger
from market_kernel.models.negotiation import (
    Offer,
    OfferStatus,
    Proposal,
    ProposalStatus,
    WorkRequest,
    WorkRequestStatus,
)
from market_kernel.services.base import BaseService

logger = get_logger("services.negotiation")


def _require_int(value: object, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmountError(value, f"{name} must be an integer")
    return value


class NegotiationService(BaseService[WorkRequest]):
    """Negotiation workflow over work requests, proposals and offers."""

    def __init__(
        self,
        session: Session,
        policy: MarketPolicy,
        clock: Clock | None = None,
        events: EventBuffer | None = None,
    ):
        super().__init__(session, clock, events)
        self.policy = policy

    # =========================================================================
    # Validation helpers
    # =========================================================================

    def _check_floor(self, amount: object, name: str = "price") -> int:
        amount = _require_int(amount, name)
        if amount < self.policy.price_floor:
            raise BudgetTooLowError(amount=amount, floor=self.policy.price_floor)
        return amount

    def _check_delivery_days(self, delivery_days: object) -> int:
        longest = self.policy.max_delivery_days
        if (
            not isinstance(delivery_days, int)
            or isinstance(delivery_days, bool)
            or not 1 <= delivery_days <= longest
        ):
            raise InvalidDeliveryWindowError(delivery_days, longest)
        return delivery_days

    @staticmethod
    def _require_role(actor: Actor, operation: str, *roles: ActorRole) -> None:
        if actor.role not in roles:
            raise RoleNotPermittedError(str(actor.id), actor.role.value, operation)

    # =========================================================================
    # Work requests
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
        """
        Post a work request, open for proposals.

        Raises:
            RoleNotPermittedError: actor is not a requester.
            BudgetTooLowError: budget_min below the platform floor.
            InvalidBudgetRangeError: budget_max < budget_min.
        """
        self._require_role(actor, "post a work request", ActorRole.REQUESTER)
        budget_min = self._check_floor(budget_min, "budget_min")
        budget_max = _require_int(budget_max, "budget_max")
        if budget_max < budget_min:
            raise InvalidBudgetRangeError(budget_min=budget_min, budget_max=budget_max)

        request = WorkRequest(
            requester_id=actor.id,
            title=title,
            description=description,
            skills=list(skills),
            budget_min=budget_min,
            budget_max=budget_max,
            deadline=deadline,
            status=WORK_REQUEST_WORKFLOW.initial_state,
            created_by_id=actor.id,
        )
        self.session.add(request)
        self.session.flush()

        logger.info(
            "work_request_posted",
            extra={
                "request_id": str(request.id),
                "requester_id": str(actor.id),
                "budget_min": budget_min,
                "budget_max": budget_max,
            },
        )
        return WorkRequestInfo.from_model(request)

    def close_request(self, request_id: UUID, actor: Actor) -> WorkRequestInfo:
        """Owner withdraws an open request.  Pending proposals stay as they are."""
        request = self._get_request(request_id)
        if request.requester_id != actor.id:
            raise NotOwnerError(str(request_id), str(actor.id))
        if not self._compare_and_set(
            WorkRequest, request_id, WORK_REQUEST_WORKFLOW,
            WorkRequestStatus.OPEN, "close", actor.id,
        ):
            current = self._reload(WorkRequest, request_id)
            raise RequestNotOpenError(str(request_id), current.status)
        return WorkRequestInfo.from_model(self._reload(WorkRequest, request_id))

    def mark_request_completed(self, request_id: UUID, actor_id: UUID) -> bool:
        """
        Move an in-progress request to completed.

        Called by the order lifecycle when the resulting order completes.
        Returns False when the request was not in progress (already
        completed, or never accepted), which callers treat as a no-op.
        """
        return self._compare_and_set(
            WorkRequest, request_id, WORK_REQUEST_WORKFLOW,
            WorkRequestStatus.IN_PROGRESS, "complete", actor_id,
        )

    # =========================================================================
    # Proposals
    # =========================================================================

    def submit_proposal(
        self,
        request_id: UUID,
        actor: Actor,
        price: int,
        delivery_days: int,
        message: str | None = None,
    ) -> ProposalInfo:
        """
        File a provider's proposal against an open work request.

        The request row is locked for the duration, so concurrent
        submissions and acceptances on the same request serialize.

        Raises:
            RoleNotPermittedError: actor is not a provider.
            SelfDealingError: provider owns the request.
            RequestNotOpenError: request is not open.
            DuplicateApplicationError: provider has a pending or accepted proposal.
            BudgetTooLowError / InvalidDeliveryWindowError.
        """
        self._require_role(actor, "submit a proposal", ActorRole.PROVIDER)
        price = self._check_floor(price)
        delivery_days = self._check_delivery_days(delivery_days)

        request = self._get_request(request_id, lock=True)
        if request.requester_id == actor.id:
            raise SelfDealingError(str(actor.id))
        if request.status != WorkRequestStatus.OPEN:
            raise RequestNotOpenError(str(request_id), request.status)

        live = self.session.execute(
            select(Proposal.id).where(
                Proposal.work_request_id == request_id,
                Proposal.provider_id == actor.id,
                Proposal.status.in_(
                    [ProposalStatus.PENDING.value, ProposalStatus.ACCEPTED.value]
                ),
            )
        ).first()
        if live is not None:
            raise DuplicateApplicationError(str(request_id), str(actor.id))

        next_position = self.session.execute(
            select(func.coalesce(func.max(Proposal.position) + 1, 0)).where(
                Proposal.work_request_id == request_id
            )
        ).scalar_one()

        proposal = Proposal(
            work_request_id=request_id,
            position=next_position,
            provider_id=actor.id,
            price=price,
            delivery_days=delivery_days,
            message=message,
            status=PROPOSAL_WORKFLOW.initial_state,
            created_by_id=actor.id,
        )
        self.session.add(proposal)
        self.session.flush()
        self.session.expire(request, ["proposals"])

        with LogContext.bind(request_id=request_id, actor_id=actor.id):
            logger.info(
                "proposal_submitted",
                extra={
                    "proposal_id": str(proposal.id),
                    "position": next_position,
                    "price": price,
                    "delivery_days": delivery_days,
                },
            )
        self._emit(
            DomainEvent.create(
                EventName.PROPOSAL_SUBMITTED,
                self.clock.now(),
                [request.requester_id],
                request_id=request_id,
                proposal_id=proposal.id,
                provider_id=actor.id,
                price=price,
                delivery_days=delivery_days,
            )
        )
        return ProposalInfo.from_model(proposal)

    def accept_proposal(
        self,
        request_id: UUID,
        proposal_id: UUID,
        actor: Actor,
    ) -> AcceptedTerm:
        """
        Accept one proposal and produce the term the order is opened from.

        Two compare-and-set steps: the request open -> in_progress (the
        single winner among concurrent acceptances on this request), then
        the proposal pending -> accepted.

        Raises:
            NotOwnerError: actor does not own the request.
            ProposalNotFoundError: no such proposal on this request.
            AlreadyDecidedError: the proposal, or the request, was already decided.
            RequestNotOpenError: the owner closed the request.
        """
        request = self._get_request(request_id)
        if request.requester_id != actor.id:
            raise NotOwnerError(str(request_id), str(actor.id))
        proposal = request.proposal(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(str(request_id), str(proposal_id))
        if proposal.status != ProposalStatus.PENDING:
            raise AlreadyDecidedError("proposal", str(proposal_id), proposal.status)

        now = self.clock.now()
        if not self._compare_and_set(
            WorkRequest, request_id, WORK_REQUEST_WORKFLOW,
            WorkRequestStatus.OPEN, "accept_proposal", actor.id,
        ):
            current = self._reload(WorkRequest, request_id)
            if current.status == WorkRequestStatus.CLOSED:
                raise RequestNotOpenError(str(request_id), current.status)
            raise AlreadyDecidedError("work_request", str(request_id), current.status)

        if not self._compare_and_set(
            Proposal, proposal_id, PROPOSAL_WORKFLOW,
            ProposalStatus.PENDING, "accept", actor.id, decided_at=now,
        ):
            current = self._reload(Proposal, proposal_id)
            raise AlreadyDecidedError("proposal", str(proposal_id), current.status)

        rejected = 0
        if self.policy.auto_reject_sibling_proposals:
            rejected = self._reject_siblings(request_id, proposal_id, actor.id, now)

        proposal = self._reload(Proposal, proposal_id)
        with LogContext.bind(request_id=request_id, actor_id=actor.id):
            logger.info(
                "proposal_accepted",
                extra={
                    "proposal_id": str(proposal_id),
                    "price": proposal.price,
                    "siblings_rejected": rejected,
                },
            )
        self._emit(
            DomainEvent.create(
                EventName.PROPOSAL_ACCEPTED,
                now,
                [proposal.provider_id],
                request_id=request_id,
                proposal_id=proposal_id,
                requester_id=actor.id,
                price=proposal.price,
            )
        )
        return AcceptedTerm(
            buyer_id=request.requester_id,
            seller_id=proposal.provider_id,
            amount=proposal.price,
            delivery_days=proposal.delivery_days,
            origin_kind=TermOrigin.PROPOSAL,
            origin_id=proposal_id,
            accepted_at=now,
            work_request_id=request_id,
        )

    def reject_proposal(
        self,
        request_id: UUID,
        proposal_id: UUID,
        actor: Actor,
    ) -> ProposalInfo:
        """Owner declines a pending proposal."""
        request = self._get_request(request_id)
        if request.requester_id != actor.id:
            raise NotOwnerError(str(request_id), str(actor.id))
        proposal = request.proposal(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(str(request_id), str(proposal_id))
        if not self._compare_and_set(
            Proposal, proposal_id, PROPOSAL_WORKFLOW,
            ProposalStatus.PENDING, "reject", actor.id, decided_at=self.clock.now(),
        ):
            current = self._reload(Proposal, proposal_id)
            raise AlreadyDecidedError("proposal", str(proposal_id), current.status)
        return ProposalInfo.from_model(self._reload(Proposal, proposal_id))

    def _reject_siblings(
        self, request_id: UUID, accepted_id: UUID, actor_id: UUID, now: datetime
    ) -> int:
        result = self.session.execute(
            update(Proposal)
            .where(
                Proposal.work_request_id == request_id,
                Proposal.id != accepted_id,
                Proposal.status == ProposalStatus.PENDING.value,
            )
            .values(
                status=ProposalStatus.REJECTED.value,
                decided_at=now,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        request = self.session.get(WorkRequest, request_id)
        if request is not None:
            for sibling in request.proposals:
                if sibling.id != accepted_id:
                    self.session.expire(sibling)
            self.session.expire(request, ["proposals"])
        return result.rowcount

    # =========================================================================
    # Offers
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
        """
        Send a direct offer inside a conversation.

        A provider sending the offer is the seller and the receiver the
        buyer; a requester sending it is the buyer.

        Raises:
            SelfDealingError: sender and receiver are the same user.
            BudgetTooLowError / InvalidDeliveryWindowError.
            InvalidMilestonesError: a milestone is malformed or the
                milestones add up to more than the price.
        """
        self._require_role(
            actor, "send an offer", ActorRole.PROVIDER, ActorRole.REQUESTER
        )
        if actor.id == receiver_id:
            raise SelfDealingError(str(actor.id))
        price = self._check_floor(price)
        delivery_days = self._check_delivery_days(delivery_days)
        self._check_milestones(milestones, price)
        if expires_at is not None:
            if expires_at.tzinfo is None or expires_at.utcoffset() is None:
                raise InvalidExpiryError(expires_at.isoformat(), "has no timezone")
            if expires_at <= self.clock.now():
                raise InvalidExpiryError(expires_at.isoformat())

        if actor.role == ActorRole.PROVIDER:
            buyer_id, seller_id = receiver_id, actor.id
        else:
            buyer_id, seller_id = actor.id, receiver_id

        offer = Offer(
            conversation_id=conversation_id,
            sender_id=actor.id,
            receiver_id=receiver_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            price=price,
            delivery_days=delivery_days,
            included_work=included_work,
            milestones=[m.to_dict() for m in milestones],
            status=OFFER_WORKFLOW.initial_state,
            expires_at=expires_at,
            created_by_id=actor.id,
        )
        self.session.add(offer)
        self.session.flush()

        with LogContext.bind(offer_id=offer.id, actor_id=actor.id):
            logger.info(
                "offer_created",
                extra={
                    "conversation_id": conversation_id,
                    "price": price,
                    "milestone_count": len(milestones),
                },
            )
        self._emit(
            DomainEvent.create(
                EventName.OFFER_CREATED,
                self.clock.now(),
                [receiver_id],
                offer_id=offer.id,
                conversation_id=conversation_id,
                sender_id=actor.id,
                price=price,
            )
        )
        return OfferInfo.from_model(offer)

    def _check_milestones(self, milestones: Sequence[Milestone], price: int) -> None:
        total = 0
        for m in milestones:
            if not m.name or not m.name.strip():
                raise InvalidMilestonesError("every milestone needs a name")
            if not isinstance(m.price, int) or isinstance(m.price, bool) or m.price <= 0:
                raise InvalidMilestonesError(f"milestone '{m.name}' needs a positive price")
            total += m.price
        if total > price:
            raise InvalidMilestonesError(
                f"milestones add up to {total}, more than the offer price {price}"
            )

    def accept_offer(self, offer_id: UUID, actor: Actor) -> AcceptedTerm:
        """
        Receiver accepts a pending offer.

        Raises:
            NotReceiverError: actor is not the receiver.
            OfferExpiredError: the offer is past ``expires_at``.
            AlreadyDecidedError: the offer was already decided (including
                by a concurrent acceptance).
        """
        offer = self._get_offer(offer_id)
        if offer.receiver_id != actor.id:
            raise NotReceiverError(str(offer_id), str(actor.id))
        if offer.status != OfferStatus.PENDING:
            raise AlreadyDecidedError("offer", str(offer_id), offer.status)
        now = self.clock.now()
        if offer.expires_at is not None and now >= offer.expires_at:
            raise OfferExpiredError(str(offer_id), offer.expires_at.isoformat())

        if not self._compare_and_set(
            Offer, offer_id, OFFER_WORKFLOW,
            OfferStatus.PENDING, "accept", actor.id, accepted_at=now,
        ):
            current = self._reload(Offer, offer_id)
            raise AlreadyDecidedError("offer", str(offer_id), current.status)

        offer = self._reload(Offer, offer_id)
        with LogContext.bind(offer_id=offer_id, actor_id=actor.id):
            logger.info("offer_accepted", extra={"price": offer.price})
        self._emit(
            DomainEvent.create(
                EventName.OFFER_ACCEPTED,
                now,
                [offer.sender_id],
                offer_id=offer_id,
                conversation_id=offer.conversation_id,
                accepted_by=actor.id,
                price=offer.price,
            )
        )
        return AcceptedTerm(
            buyer_id=offer.buyer_id,
            seller_id=offer.seller_id,
            amount=offer.price,
            delivery_days=offer.delivery_days,
            origin_kind=TermOrigin.OFFER,
            origin_id=offer_id,
            accepted_at=now,
            conversation_id=offer.conversation_id,
        )

    def reject_offer(self, offer_id: UUID, actor: Actor) -> OfferInfo:
        """Receiver declines a pending offer."""
        offer = self._get_offer(offer_id)
        if offer.receiver_id != actor.id:
            raise NotReceiverError(str(offer_id), str(actor.id))
        if not self._compare_and_set(
            Offer, offer_id, OFFER_WORKFLOW, OfferStatus.PENDING, "reject", actor.id,
        ):
            current = self._reload(Offer, offer_id)
            raise AlreadyDecidedError("offer", str(offer_id), current.status)
        return OfferInfo.from_model(self._reload(Offer, offer_id))

    def expire_offer(self, offer_id: UUID, actor_id: UUID) -> OfferInfo:
        """
        Mark a pending offer past its expiry as expired.

        There is no background sweep; callers invoke this explicitly.

        Raises:
            AlreadyDecidedError: the offer is no longer pending.
            OfferNotExpiredError: no expiry set, or not reached yet.
        """
        offer = self._get_offer(offer_id)
        if offer.status != OfferStatus.PENDING:
            raise AlreadyDecidedError("offer", str(offer_id), offer.status)
        if offer.expires_at is None or self.clock.now() < offer.expires_at:
            raise OfferNotExpiredError(
                str(offer_id),
                offer.expires_at.isoformat() if offer.expires_at else None,
            )
        if not self._compare_and_set(
            Offer, offer_id, OFFER_WORKFLOW, OfferStatus.PENDING, "expire", actor_id,
        ):
            current = self._reload(Offer, offer_id)
            raise AlreadyDecidedError("offer", str(offer_id), current.status)
        return OfferInfo.from_model(self._reload(Offer, offer_id))

    # =========================================================================
    # Packages
    # =========================================================================

    def package_term(
        self,
        buyer: Actor,
        seller_id: UUID,
        package_label: str,
        price: int,
        delivery_days: int,
        package_id: UUID | None = None,
    ) -> AcceptedTerm:
        """
        Term for buying a provider's fixed-price package outright.

        Package catalogues live outside the kernel; the caller supplies the
        listed price and delivery window.
        """
        self._require_role(buyer, "buy a package", ActorRole.REQUESTER)
        if buyer.id == seller_id:
            raise SelfDealingError(str(buyer.id))
        price = self._check_floor(price)
        delivery_days = self._check_delivery_days(delivery_days)
        logger.info(
            "package_term_created",
            extra={
                "buyer_id": str(buyer.id),
                "seller_id": str(seller_id),
                "package_label": package_label,
                "price": price,
            },
        )
        return AcceptedTerm(
            buyer_id=buyer.id,
            seller_id=seller_id,
            amount=price,
            delivery_days=delivery_days,
            origin_kind=TermOrigin.PACKAGE,
            origin_id=package_id,
            accepted_at=self.clock.now(),
            package_label=package_label,
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    def _get_request(self, request_id: UUID, lock: bool = False) -> WorkRequest:
        stmt = select(WorkRequest).where(WorkRequest.id == request_id)
        if lock:
            stmt = stmt.with_for_update()
        request = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise WorkRequestNotFoundError(str(request_id))
        return request

    def _get_offer(self, offer_id: UUID) -> Offer:
        offer = self.session.execute(
            select(Offer)
            .where(Offer.id == offer_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if offer is None:
            raise OfferNotFoundError(str(offer_id))
        return offer
