"""
Module: market_kernel.selectors.negotiation_selector
Responsibility: Read-only negotiation queries -- open work requests,
    whether a provider has applied, proposals by provider, offers in a
    conversation, and consultation status.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from market_kernel.domain.dtos import (
    ConsultationInfo,
    OfferInfo,
    ProposalInfo,
    WorkRequestInfo,
)
from market_kernel.exceptions import OfferNotFoundError, WorkRequestNotFoundError
from market_kernel.models.consultation import ConsultationPayment
from market_kernel.models.negotiation import (
    Offer,
    Proposal,
    ProposalStatus,
    WorkRequest,
    WorkRequestStatus,
)
from market_kernel.selectors.base import BaseSelector


class NegotiationSelector(BaseSelector[WorkRequest]):
    """Read path over work requests, proposals, offers and consultations."""

    def __init__(self, session: Session):
        super().__init__(session)

    def request(self, request_id: UUID) -> WorkRequestInfo:
        request = self.session.get(WorkRequest, request_id)
        if request is None:
            raise WorkRequestNotFoundError(str(request_id))
        return WorkRequestInfo.from_model(request)

    def open_requests(self, skill: str | None = None) -> list[WorkRequestInfo]:
        """
        Requests still taking proposals, newest first.

        ``skill`` filters in Python since skills are stored as a JSON list.
        """
        rows = self.session.execute(
            select(WorkRequest)
            .where(WorkRequest.status == WorkRequestStatus.OPEN.value)
            .order_by(WorkRequest.created_at.desc())
        ).scalars()
        return [
            WorkRequestInfo.from_model(r, include_proposals=False)
            for r in rows
            if skill is None or skill in (r.skills or ())
        ]

    def requests_by(self, requester_id: UUID) -> list[WorkRequestInfo]:
        rows = self.session.execute(
            select(WorkRequest)
            .where(WorkRequest.requester_id == requester_id)
            .order_by(WorkRequest.created_at.desc())
        ).scalars()
        return [WorkRequestInfo.from_model(r) for r in rows]

    def has_applied(self, request_id: UUID, provider_id: UUID) -> bool:
        """True while the provider holds a pending or accepted proposal."""
        found = self.session.execute(
            select(Proposal.id).where(
                Proposal.work_request_id == request_id,
                Proposal.provider_id == provider_id,
                Proposal.status.in_(
                    [ProposalStatus.PENDING.value, ProposalStatus.ACCEPTED.value]
                ),
            )
        ).first()
        return found is not None

    def proposals_by(self, provider_id: UUID) -> list[ProposalInfo]:
        rows = self.session.execute(
            select(Proposal)
            .where(Proposal.provider_id == provider_id)
            .order_by(Proposal.created_at.desc())
        ).scalars()
        return [ProposalInfo.from_model(p) for p in rows]

    def offer(self, offer_id: UUID) -> OfferInfo:
        offer = self.session.get(Offer, offer_id)
        if offer is None:
            raise OfferNotFoundError(str(offer_id))
        return OfferInfo.from_model(offer)

    def offers_in_conversation(self, conversation_id: str) -> list[OfferInfo]:
        rows = self.session.execute(
            select(Offer)
            .where(Offer.conversation_id == conversation_id)
            .order_by(Offer.created_at)
        ).scalars()
        return [OfferInfo.from_model(o) for o in rows]

    def consultation_status(
        self, user_id: UUID, conversation_id: str
    ) -> ConsultationInfo | None:
        """
        The consultation payment a meeting would be scheduled against.

        Prefers the unused payment; otherwise the most recently used one.
        None when the user never paid in this conversation.
        """
        rows = list(
            self.session.execute(
                select(ConsultationPayment)
                .where(
                    ConsultationPayment.user_id == user_id,
                    ConsultationPayment.conversation_id == conversation_id,
                )
                .order_by(ConsultationPayment.created_at.desc())
            ).scalars()
        )
        if not rows:
            return None
        unused = [p for p in rows if not p.used]
        return ConsultationInfo.from_model(unused[0] if unused else rows[0])
