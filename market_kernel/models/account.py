"""
Module: market_kernel.models.account
Responsibility: ORM persistence for wallet accounts -- one per user plus the
    platform escrow and platform revenue system accounts.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - balance >= 0 (CHECK constraint; the ledger's conditional UPDATE never
      lets it go below zero).
    - code is unique; at most one user account per owner.
    - version increases by one on every balance change.

Failure modes:
    - AccountNotFoundError when an operation references an unknown account.
    - AccountFrozenError when a frozen account is debited.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString

ESCROW_ACCOUNT_CODE = "platform:escrow"
REVENUE_ACCOUNT_CODE = "platform:revenue"


def user_account_code(owner_id: UUID) -> str:
    return f"user:{owner_id}"


class AccountKind(str, Enum):
    """What a wallet account is for."""

    USER = "user"
    ESCROW = "escrow"
    PLATFORM = "platform"


class WalletAccount(TrackedBase):
    """
    Wallet balance of one user or one platform pseudo-account.

    Contract:
        Mutated only by WalletLedger, and only through conditional UPDATE
        statements that also append a LedgerTransaction row.

    Guarantees:
        - balance equals the sum of this account's completed transactions.
        - Never deleted; freezing soft-disables debits.
    """

    __tablename__ = "wallet_accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_wallet_account_code"),
        UniqueConstraint("owner_id", name="uq_wallet_account_owner"),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        Index("idx_wallet_account_kind", "kind"),
    )

    code: Mapped[str] = mapped_column(String(64), nullable=False)

    # NULL for system accounts
    owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    kind: Mapped[AccountKind] = mapped_column(
        String(20),
        default=AccountKind.USER,
        nullable=False,
    )

    balance: Mapped[int] = mapped_column(default=0, nullable=False)
    lifetime_credited: Mapped[int] = mapped_column(default=0, nullable=False)
    lifetime_debited: Mapped[int] = mapped_column(default=0, nullable=False)
    version: Mapped[int] = mapped_column(default=0, nullable=False)

    is_frozen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<WalletAccount {self.code} balance={self.balance}>"

    @property
    def is_system(self) -> bool:
        return self.owner_id is None
