"""
Module: market_kernel.selectors.order_selector
Responsibility: Read-only order queries -- orders by party, open orders,
    an order together with its dispute, and a seller's track record.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from market_kernel.domain.dtos import OrderInfo, SellerPerformance
from market_kernel.exceptions import OrderNotFoundError
from market_kernel.models.account import WalletAccount
from market_kernel.models.order import Order, OrderDispute, OrderStatus
from market_kernel.models.transaction import LedgerTransaction, TransactionKind
from market_kernel.selectors.base import BaseSelector

_OPEN_STATUSES = (OrderStatus.ACTIVE.value, OrderStatus.DISPUTED.value)


class OrderSelector(BaseSelector[Order]):
    """Read path over orders and disputes."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, order_id: UUID) -> OrderInfo:
        """Order with its dispute, if one was raised."""
        row = self.session.execute(
            select(Order, OrderDispute)
            .outerjoin(OrderDispute, OrderDispute.order_id == Order.id)
            .where(Order.id == order_id)
        ).one_or_none()
        if row is None:
            raise OrderNotFoundError(str(order_id))
        order, dispute = row
        return OrderInfo.from_model(order, dispute=dispute)

    def for_party(self, user_id: UUID, status: str | None = None) -> list[OrderInfo]:
        """Orders where ``user_id`` is buyer or seller, newest first."""
        stmt = (
            select(Order)
            .where(or_(Order.buyer_id == user_id, Order.seller_id == user_id))
            .order_by(Order.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(Order.status == status)
        return [OrderInfo.from_model(o) for o in self.session.execute(stmt).scalars()]

    def as_buyer(self, buyer_id: UUID) -> list[OrderInfo]:
        rows = self.session.execute(
            select(Order).where(Order.buyer_id == buyer_id).order_by(Order.created_at.desc())
        ).scalars()
        return [OrderInfo.from_model(o) for o in rows]

    def as_seller(self, seller_id: UUID) -> list[OrderInfo]:
        rows = self.session.execute(
            select(Order).where(Order.seller_id == seller_id).order_by(Order.created_at.desc())
        ).scalars()
        return [OrderInfo.from_model(o) for o in rows]

    def active(self) -> list[OrderInfo]:
        """Orders still holding escrow (active or disputed), oldest due first."""
        rows = self.session.execute(
            select(Order)
            .where(Order.status.in_(_OPEN_STATUSES))
            .order_by(Order.delivery_due_at)
        ).scalars()
        return [OrderInfo.from_model(o) for o in rows]

    def open_disputes(self) -> list[OrderInfo]:
        rows = self.session.execute(
            select(Order, OrderDispute)
            .join(OrderDispute, OrderDispute.order_id == Order.id)
            .where(Order.status == OrderStatus.DISPUTED.value)
            .order_by(OrderDispute.raised_at)
        ).all()
        return [OrderInfo.from_model(order, dispute=dispute) for order, dispute in rows]

    def seller_performance(self, seller_id: UUID) -> SellerPerformance:
        """
        Track record over completed orders.

        On time means completed no later than ``delivery_due_at``.  Earnings
        are the payment credits the seller's wallet received from settlements.
        """
        completed = list(
            self.session.execute(
                select(Order).where(
                    Order.seller_id == seller_id,
                    Order.status == OrderStatus.COMPLETED.value,
                )
            ).scalars()
        )
        ratings = tuple(o.rating for o in completed if o.rating is not None)
        on_time = sum(
            1
            for o in completed
            if o.completed_at is not None and o.completed_at <= o.delivery_due_at
        )
        earned = self.session.execute(
            select(func.coalesce(func.sum(LedgerTransaction.amount), 0))
            .join(WalletAccount, WalletAccount.id == LedgerTransaction.account_id)
            .where(
                WalletAccount.owner_id == seller_id,
                LedgerTransaction.kind == TransactionKind.PAYMENT.value,
                LedgerTransaction.amount > 0,
                LedgerTransaction.order_id.is_not(None),
            )
        ).scalar_one()
        return SellerPerformance(
            seller_id=seller_id,
            completed_orders=len(completed),
            average_rating=sum(ratings) / len(ratings) if ratings else None,
            on_time_rate=on_time / len(completed) if completed else None,
            total_earned=int(earned),
            ratings=ratings,
        )
