"""
OrderService -- escrowed order lifecycle.

Responsibility:
    Turns an ``AcceptedTerm`` into an order backed by an escrow hold, takes
    the seller's work submission, and settles the hold when the buyer
    accepts delivery.  Disputes are opened here and resolved by
    ``DisputeService``.

Architecture position:
    Kernel > Services -- imperative shell.  Uses WalletLedger for every
    money movement and NegotiationService to close out the originating
    work request.

Invariants enforced:
    - The hold is placed before the order row exists; if the hold fails no
      order is created.
    - platform_fee is computed once, at open, from the policy in force.
    - Status follows ORDER_WORKFLOW via compare-and-set; of two concurrent
      ``complete``/``raise_dispute`` calls exactly one wins and the other
      fails ``OrderNotActiveError``.
    - Completion settles exactly once: escrow -> seller (amount - fee) and
      escrow -> revenue (fee).

Failure modes:
    - OrderNotFoundError, OrderNotActiveError.
    - NotSellerError (submit_work), NotPartyError (complete, raise_dispute).
    - InvalidRatingError.
    - InsufficientFundsError / AccountFrozenError from the hold.
"""

from collections.abc import Sequence
from datetime import timedelta
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock
from market_kernel.domain.dtos import Allocation, DeadlineInfo, LedgerMetadata, OrderInfo
from market_kernel.domain.events import DomainEvent, EventBuffer, EventName
from market_kernel.domain.lifecycles import ORDER_WORKFLOW
from market_kernel.domain.policy import MarketPolicy
from market_kernel.domain.terms import AcceptedTerm, Actor, settle
from market_kernel.exceptions import (
    InvalidRatingError,
    NotPartyError,
    NotSellerError,
    OrderNotActiveError,
    OrderNotFoundError,
)
from market_kernel.logging_config import LogContext, get_logger
from market_kernel.models.order import Order, OrderDispute, OrderStatus
from market_kernel.models.transaction import TransactionKind
from market_kernel.services.base import BaseService
from market_kernel.services.negotiation_service import NegotiationService
from market_kernel.services.wallet_ledger import WalletLedger

logger = get_logger("services.order")


def _check_rating(rating: object) -> None:
    if rating is None:
        return
    if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
        raise InvalidRatingError(rating)


class OrderService(BaseService[Order]):
    """Order lifecycle: open, submit work, complete, dispute."""

    def __init__(
        self,
        session: Session,
        ledger: WalletLedger,
        policy: MarketPolicy,
        clock: Clock | None = None,
        events: EventBuffer | None = None,
        negotiation: NegotiationService | None = None,
    ):
        super().__init__(session, clock, events)
        self.ledger = ledger
        self.policy = policy
        self.negotiation = negotiation or NegotiationService(
            session, policy, self.clock, self.events
        )

    # =========================================================================
    # Open
    # =========================================================================

    def open(self, term: AcceptedTerm, actor: Actor) -> OrderInfo:
        """
        Open an order for ``term`` and hold the buyer's funds in escrow.

        The buyer is debited the full amount; the escrow account is
        credited the same.  The fee stays inside escrow until settlement.

        Raises:
            AccountNotFoundError: buyer or system accounts missing.
            InsufficientFundsError: buyer cannot cover the amount.
            AccountFrozenError: buyer's account is frozen.
        """
        order_id = uuid4()
        fee = self.policy.order_fee(term.amount)
        buyer_account = self.ledger.account_for_owner(term.buyer_id)

        with LogContext.bind(order_id=order_id, actor_id=actor.id):
            hold = self.ledger.transfer(
                buyer_account.id,
                self.ledger.escrow_account_id(),
                term.amount,
                TransactionKind.PAYMENT,
                LedgerMetadata(
                    actor_id=actor.id,
                    order_id=order_id,
                    conversation_id=term.conversation_id,
                    description=f"escrow hold for {term.origin_kind.value}",
                ),
            )

            now = self.clock.now()
            order = Order(
                id=order_id,
                buyer_id=term.buyer_id,
                seller_id=term.seller_id,
                amount=term.amount,
                platform_fee=fee,
                origin_kind=term.origin_kind.value,
                origin_id=term.origin_id,
                work_request_id=term.work_request_id,
                conversation_id=term.conversation_id,
                package_label=term.package_label,
                status=ORDER_WORKFLOW.initial_state,
                delivery_due_at=now + timedelta(days=term.delivery_days),
                hold_operation_id=hold.operation_id,
                created_by_id=actor.id,
            )
            self.session.add(order)
            self.session.flush()

            logger.info(
                "order_opened",
                extra={
                    "buyer_id": str(term.buyer_id),
                    "seller_id": str(term.seller_id),
                    "amount": term.amount,
                    "platform_fee": fee,
                    "origin_kind": term.origin_kind.value,
                    "hold_operation_id": str(hold.operation_id),
                },
            )

        self._emit(
            DomainEvent.create(
                EventName.ORDER_OPENED,
                now,
                [term.buyer_id, term.seller_id],
                order_id=order_id,
                amount=term.amount,
                platform_fee=fee,
                delivery_due_at=order.delivery_due_at,
            )
        )
        return OrderInfo.from_model(order)

    # =========================================================================
    # Delivery
    # =========================================================================

    def submit_work(
        self,
        order_id: UUID,
        actor: Actor,
        message: str,
        links: Sequence[str] = (),
        files: Sequence[str] = (),
    ) -> OrderInfo:
        """
        Record the seller's delivery.  Resubmitting overwrites the previous
        submission; ``submitted_at`` keeps the first submission time.
        """
        order = self._get(order_id, lock=True)
        if order.seller_id != actor.id:
            raise NotSellerError(str(order_id), str(actor.id))
        if order.status != OrderStatus.ACTIVE:
            raise OrderNotActiveError(str(order_id), order.status)

        now = self.clock.now()
        first = order.submitted_at is None
        order.submission_message = message
        order.submission_links = list(links)
        order.submission_files = list(files)
        if first:
            order.submitted_at = now
        order.submission_updated_at = now
        order.updated_by_id = actor.id
        self.session.flush()

        with LogContext.bind(order_id=order_id, actor_id=actor.id):
            logger.info(
                "work_submitted",
                extra={
                    "first_submission": first,
                    "link_count": len(order.submission_links),
                    "file_count": len(order.submission_files),
                },
            )
        self._emit(
            DomainEvent.create(
                EventName.WORK_SUBMITTED,
                now,
                [order.buyer_id],
                order_id=order_id,
                seller_id=actor.id,
                first_submission=first,
            )
        )
        return OrderInfo.from_model(order)

    # =========================================================================
    # Completion
    # =========================================================================

    def complete(
        self,
        order_id: UUID,
        actor: Actor,
        rating: int | None = None,
        review: str | None = None,
    ) -> OrderInfo:
        """
        Accept delivery and release escrow.

        Only the buyer, or a system actor acting on the buyer's behalf, may
        complete an order.

        Raises:
            NotPartyError: actor is neither the buyer nor a system actor.
            InvalidRatingError: rating outside 1..5.
            OrderNotActiveError: order already completed or disputed.
        """
        order = self._get(order_id)
        if not (actor.is_system or order.buyer_id == actor.id):
            raise NotPartyError(str(order_id), str(actor.id))
        _check_rating(rating)

        now = self.clock.now()
        if not self._compare_and_set(
            Order, order_id, ORDER_WORKFLOW, OrderStatus.ACTIVE, "complete", actor.id,
            completed_at=now, rating=rating, review=review,
        ):
            current = self._reload(Order, order_id)
            raise OrderNotActiveError(str(order_id), current.status)

        order = self._reload(Order, order_id)
        settlement = settle(order.amount, order.platform_fee)
        with LogContext.bind(order_id=order_id, actor_id=actor.id):
            self.ledger.disburse(
                self.ledger.escrow_account_id(),
                [
                    Allocation(
                        self.ledger.account_for_owner(order.seller_id).id,
                        settlement.seller_amount,
                        TransactionKind.PAYMENT.value,
                    ),
                    Allocation(
                        self.ledger.revenue_account_id(),
                        settlement.platform_amount,
                        TransactionKind.FEE.value,
                    ),
                ],
                LedgerMetadata(
                    actor_id=actor.id,
                    order_id=order_id,
                    conversation_id=order.conversation_id,
                    description="order completed",
                ),
            )
            if order.work_request_id is not None:
                self.negotiation.mark_request_completed(order.work_request_id, actor.id)

            logger.info(
                "order_completed",
                extra={
                    "seller_amount": settlement.seller_amount,
                    "platform_amount": settlement.platform_amount,
                    "rating": rating,
                },
            )

        self._emit(
            DomainEvent.create(
                EventName.ORDER_COMPLETED,
                now,
                [order.buyer_id, order.seller_id],
                order_id=order_id,
                seller_amount=settlement.seller_amount,
                platform_fee=settlement.platform_amount,
                rating=rating,
            )
        )
        return OrderInfo.from_model(order)

    # =========================================================================
    # Disputes
    # =========================================================================

    def raise_dispute(
        self,
        order_id: UUID,
        actor: Actor,
        reason: str,
        evidence: Sequence[str] = (),
    ) -> OrderInfo:
        """
        Freeze an active order pending arbitration.

        Raises:
            NotPartyError: actor is neither buyer nor seller.
            OrderNotActiveError: order already completed or disputed.
        """
        order = self._get(order_id)
        if actor.id not in (order.buyer_id, order.seller_id):
            raise NotPartyError(str(order_id), str(actor.id))

        now = self.clock.now()
        if not self._compare_and_set(
            Order, order_id, ORDER_WORKFLOW, OrderStatus.ACTIVE, "dispute", actor.id,
        ):
            current = self._reload(Order, order_id)
            raise OrderNotActiveError(str(order_id), current.status)

        dispute = OrderDispute(
            order_id=order_id,
            raised_by_id=actor.id,
            reason=reason,
            evidence=list(evidence),
            raised_at=now,
            created_by_id=actor.id,
        )
        self.session.add(dispute)
        self.session.flush()

        order = self._reload(Order, order_id)
        other_party = order.seller_id if actor.id == order.buyer_id else order.buyer_id
        with LogContext.bind(order_id=order_id, actor_id=actor.id):
            logger.info(
                "dispute_raised",
                extra={"dispute_id": str(dispute.id), "evidence_count": len(dispute.evidence)},
            )
        self._emit(
            DomainEvent.create(
                EventName.DISPUTE_RAISED,
                now,
                [other_party],
                order_id=order_id,
                raised_by=actor.id,
                reason=reason,
            )
        )
        return OrderInfo.from_model(order, dispute=dispute)

    # =========================================================================
    # Read helpers
    # =========================================================================

    def get(self, order_id: UUID) -> OrderInfo:
        order = self._get(order_id)
        dispute = self.session.execute(
            select(OrderDispute).where(OrderDispute.order_id == order_id)
        ).scalar_one_or_none()
        return OrderInfo.from_model(order, dispute=dispute)

    def deadline(self, order_id: UUID) -> DeadlineInfo:
        """
        Delivery countdown.  Informational only: nothing releases or
        refunds an order when it goes overdue.
        """
        order = self._get(order_id)
        remaining = order.delivery_due_at - self.clock.now()
        return DeadlineInfo(
            order_id=order_id,
            due_at=order.delivery_due_at,
            remaining=remaining,
            overdue=order.status == OrderStatus.ACTIVE and remaining <= timedelta(0),
            status=order.status,
        )

    def _get(self, order_id: UUID, lock: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id)
        if lock:
            stmt = stmt.with_for_update()
        order = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order
