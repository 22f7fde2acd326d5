"""
Module: market_kernel.models.transaction
Responsibility: ORM persistence for ledger transaction rows -- the
    append-only history behind every wallet balance.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - For every account: balance == sum(amount) over its completed rows.
    - Completed rows are never updated or deleted (ORM listeners in
      db/immutability.py).
    - All rows written by one ledger operation share an operation_id.

Sign convention: credits are positive, debits negative.  A 100 top-up with a
20 fee is two rows on the user account (+100 deposit, -20 fee) and one row
on the revenue account (+20 fee).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString


class TransactionKind(str, Enum):
    """Business meaning of a ledger row."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PAYMENT = "payment"
    FEE = "fee"
    REFUND = "refund"
    CONSULTATION = "consultation"


class TransactionStatus(str, Enum):
    """Only completed rows count toward the balance."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class LedgerTransaction(TrackedBase):
    """
    One signed balance change on one wallet account.

    Guarantees:
        - amount != 0.
        - balance_after is the account balance right after this row applied.
    """

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        Index("idx_ledger_tx_account", "account_id", "occurred_at"),
        Index("idx_ledger_tx_operation", "operation_id"),
        Index("idx_ledger_tx_order", "order_id"),
        Index("idx_ledger_tx_kind", "kind"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("wallet_accounts.id"),
        nullable=False,
    )

    kind: Mapped[TransactionKind] = mapped_column(String(20), nullable=False)

    # Signed: credits positive, debits negative
    amount: Mapped[int] = mapped_column(nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        String(20),
        default=TransactionStatus.COMPLETED,
        nullable=False,
    )

    balance_after: Mapped[int] = mapped_column(nullable=False)

    # Counterparty account for transfers and settlements
    related_account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("wallet_accounts.id"),
        nullable=True,
    )

    order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    conversation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    operation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # External reference (payment gateway id, payout id)
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<LedgerTransaction {self.kind} {self.amount:+d} on {self.account_id}>"
