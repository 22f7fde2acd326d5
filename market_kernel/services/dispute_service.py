"""
DisputeService -- arbiter resolution of disputed orders.

Responsibility:
    Applies an arbiter's ``DisputeOutcome`` to a disputed order: one
    escrow settlement, the order moved to completed, and the outcome,
    resolver and time recorded on the dispute.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - A dispute settles at most once.  The order's disputed -> completed
      compare-and-set admits a single winner; a second resolution fails
      ``AlreadyResolvedError`` and leaves every balance unchanged.
    - Seller, platform and buyer shares always add up to the escrowed
      amount (see ``market_kernel.domain.terms.settle``).
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock
from market_kernel.domain.dtos import Allocation, LedgerMetadata, OrderInfo
from market_kernel.domain.events import DomainEvent, EventBuffer, EventName
from market_kernel.domain.lifecycles import ORDER_WORKFLOW
from market_kernel.domain.terms import Actor, DisputeOutcome, settle
from market_kernel.exceptions import (
    AlreadyResolvedError,
    NotArbiterError,
    NotDisputedError,
    OrderNotFoundError,
)
from market_kernel.logging_config import LogContext, get_logger
from market_kernel.models.order import Order, OrderDispute, OrderStatus
from market_kernel.models.transaction import TransactionKind
from market_kernel.services.base import BaseService
from market_kernel.services.negotiation_service import NegotiationService
from market_kernel.services.wallet_ledger import WalletLedger

logger = get_logger("services.dispute")


class DisputeService(BaseService[OrderDispute]):
    """Resolves disputes with exactly one ledger settlement."""

    def __init__(
        self,
        session: Session,
        ledger: WalletLedger,
        negotiation: NegotiationService,
        clock: Clock | None = None,
        events: EventBuffer | None = None,
    ):
        super().__init__(session, clock, events)
        self.ledger = ledger
        self.negotiation = negotiation

    def resolve(
        self,
        order_id: UUID,
        arbiter: Actor,
        outcome: DisputeOutcome,
        note: str | None = None,
    ) -> OrderInfo:
        """
        Settle a disputed order.

        Raises:
            NotArbiterError: actor is not an arbiter.
            OrderNotFoundError: unknown order.
            AlreadyResolvedError: the dispute was already resolved.
            NotDisputedError: the order is not disputed.
        """
        if not arbiter.is_arbiter:
            raise NotArbiterError(str(arbiter.id))

        order = self.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(str(order_id))
        dispute = self._dispute_for(order_id)
        self._check_resolvable(order, dispute)

        now = self.clock.now()
        if not self._compare_and_set(
            Order, order_id, ORDER_WORKFLOW, OrderStatus.DISPUTED, "resolve", arbiter.id,
            completed_at=now, resolution_outcome=outcome.label,
        ):
            order = self._reload(Order, order_id)
            self._check_resolvable(order, self._dispute_for(order_id))
            raise NotDisputedError(str(order_id), order.status)

        order = self._reload(Order, order_id)
        settlement = settle(order.amount, order.platform_fee, outcome)
        allocations = [
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
            Allocation(
                self.ledger.account_for_owner(order.buyer_id).id,
                settlement.buyer_refund,
                TransactionKind.REFUND.value,
            ),
        ]
        debit_kind = (
            TransactionKind.REFUND if settlement.seller_amount == 0 else TransactionKind.PAYMENT
        )

        with LogContext.bind(order_id=order_id, actor_id=arbiter.id):
            self.ledger.disburse(
                self.ledger.escrow_account_id(),
                allocations,
                LedgerMetadata(
                    actor_id=arbiter.id,
                    order_id=order_id,
                    conversation_id=order.conversation_id,
                    description=f"dispute resolved: {outcome.label}",
                ),
                debit_kind=debit_kind,
            )

            dispute.outcome = outcome.kind.value
            dispute.seller_share_bps = outcome.seller_share_bps
            dispute.note = note
            dispute.resolved_by_id = arbiter.id
            dispute.resolved_at = now
            dispute.updated_by_id = arbiter.id
            self.session.flush()

            if order.work_request_id is not None:
                self.negotiation.mark_request_completed(order.work_request_id, arbiter.id)

            logger.info(
                "dispute_resolved",
                extra={
                    "outcome": outcome.label,
                    "seller_amount": settlement.seller_amount,
                    "platform_amount": settlement.platform_amount,
                    "buyer_refund": settlement.buyer_refund,
                },
            )

        self._emit(
            DomainEvent.create(
                EventName.DISPUTE_RESOLVED,
                now,
                [order.buyer_id, order.seller_id],
                order_id=order_id,
                outcome=outcome.label,
                seller_amount=settlement.seller_amount,
                buyer_refund=settlement.buyer_refund,
            )
        )
        return OrderInfo.from_model(order, dispute=dispute)

    def _dispute_for(self, order_id: UUID) -> OrderDispute | None:
        return self.session.execute(
            select(OrderDispute)
            .where(OrderDispute.order_id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def _check_resolvable(order: Order, dispute: OrderDispute | None) -> None:
        if dispute is not None and (
            dispute.outcome is not None or order.status == OrderStatus.COMPLETED
        ):
            raise AlreadyResolvedError(str(order.id), order.resolution_outcome)
        if order.status != OrderStatus.DISPUTED or dispute is None:
            raise NotDisputedError(str(order.id), order.status)
