"""
Module: market_kernel.selectors.ledger_selector
Responsibility: Read-only wallet queries -- balances, transaction history,
    reconciliation of stored balances against the transaction log, platform
    revenue, escrow exposure, and a canonical hash of the ledger.
Architecture position: Kernel > Selectors.

Invariants checked:
    - balance == sum(amount of completed transactions) for every account.
    - The escrow balance equals the amounts of all active and disputed
      orders (every hold is backed by an open order and vice versa).

Failure modes:
    - AccountNotFoundError for unknown account ids.
"""

import hashlib
import json
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from market_kernel.domain.dtos import AccountInfo, TransactionRecord
from market_kernel.exceptions import AccountNotFoundError
from market_kernel.models.account import (
    ESCROW_ACCOUNT_CODE,
    REVENUE_ACCOUNT_CODE,
    WalletAccount,
)
from market_kernel.models.order import Order, OrderStatus
from market_kernel.models.transaction import LedgerTransaction, TransactionStatus
from market_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AccountReconciliation:
    """Stored balance of one account against the sum of its completed rows."""

    account_id: UUID
    code: str
    stored_balance: int
    ledger_sum: int
    transaction_count: int

    @property
    def matches(self) -> bool:
        return self.stored_balance == self.ledger_sum


@dataclass(frozen=True)
class EscrowExposure:
    """Escrow account balance against the orders it is holding funds for."""

    escrow_balance: int
    held_for_orders: int
    open_order_count: int

    @property
    def matches(self) -> bool:
        return self.escrow_balance == self.held_for_orders


class LedgerSelector(BaseSelector[LedgerTransaction]):
    """
    Read path over wallet accounts and ledger transactions.

    Guarantees:
        - Never mutates.
        - Transaction history is ordered by occurrence, oldest first.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def account(self, account_id: UUID) -> AccountInfo:
        account = self.session.get(WalletAccount, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return AccountInfo.from_model(account)

    def account_by_code(self, code: str) -> AccountInfo:
        account = self.session.execute(
            select(WalletAccount).where(WalletAccount.code == code)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(code)
        return AccountInfo.from_model(account)

    def balance(self, account_id: UUID) -> int:
        return self.account(account_id).balance

    def balance_for_owner(self, owner_id: UUID) -> int:
        balance = self.session.execute(
            select(WalletAccount.balance).where(WalletAccount.owner_id == owner_id)
        ).scalar_one_or_none()
        if balance is None:
            raise AccountNotFoundError(f"owner:{owner_id}")
        return balance

    def history(
        self,
        account_id: UUID,
        limit: int | None = None,
        kinds: tuple[str, ...] | None = None,
    ) -> list[TransactionRecord]:
        """Transaction rows of one account, oldest first."""
        stmt = (
            select(LedgerTransaction)
            .where(LedgerTransaction.account_id == account_id)
            .order_by(LedgerTransaction.occurred_at, LedgerTransaction.created_at)
        )
        if kinds:
            stmt = stmt.where(LedgerTransaction.kind.in_(kinds))
        if limit is not None:
            stmt = stmt.limit(limit)
        return [
            TransactionRecord.from_model(row)
            for row in self.session.execute(stmt).scalars()
        ]

    def operation(self, operation_id: UUID) -> list[TransactionRecord]:
        """Every row written by one ledger operation."""
        rows = self.session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.operation_id == operation_id)
            .order_by(LedgerTransaction.created_at)
        ).scalars()
        return [TransactionRecord.from_model(row) for row in rows]

    def order_transactions(self, order_id: UUID) -> list[TransactionRecord]:
        rows = self.session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.order_id == order_id)
            .order_by(LedgerTransaction.occurred_at)
        ).scalars()
        return [TransactionRecord.from_model(row) for row in rows]

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, account_id: UUID) -> AccountReconciliation:
        account = self.session.get(WalletAccount, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        total, count = self.session.execute(
            select(
                func.coalesce(func.sum(LedgerTransaction.amount), 0),
                func.count(LedgerTransaction.id),
            ).where(
                LedgerTransaction.account_id == account_id,
                LedgerTransaction.status == TransactionStatus.COMPLETED.value,
            )
        ).one()
        return AccountReconciliation(
            account_id=account.id,
            code=account.code,
            stored_balance=account.balance,
            ledger_sum=int(total),
            transaction_count=count,
        )

    def reconcile_all(self) -> list[AccountReconciliation]:
        """Reconcile every account in one grouped query."""
        sums = (
            select(
                LedgerTransaction.account_id.label("account_id"),
                func.sum(LedgerTransaction.amount).label("total"),
                func.count(LedgerTransaction.id).label("n"),
            )
            .where(LedgerTransaction.status == TransactionStatus.COMPLETED.value)
            .group_by(LedgerTransaction.account_id)
            .subquery()
        )
        rows = self.session.execute(
            select(
                WalletAccount.id,
                WalletAccount.code,
                WalletAccount.balance,
                func.coalesce(sums.c.total, 0),
                func.coalesce(sums.c.n, 0),
            )
            .outerjoin(sums, sums.c.account_id == WalletAccount.id)
            .order_by(WalletAccount.code)
        ).all()
        return [
            AccountReconciliation(
                account_id=account_id,
                code=code,
                stored_balance=balance,
                ledger_sum=int(total),
                transaction_count=int(n),
            )
            for account_id, code, balance, total, n in rows
        ]

    def unreconciled(self) -> list[AccountReconciliation]:
        return [r for r in self.reconcile_all() if not r.matches]

    def total_money(self) -> int:
        """Sum of every account balance, escrow and revenue included."""
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(WalletAccount.balance), 0))
            ).scalar_one()
        )

    # ------------------------------------------------------------------
    # Platform accounts
    # ------------------------------------------------------------------

    def platform_revenue(self) -> int:
        return self.account_by_code(REVENUE_ACCOUNT_CODE).balance

    def escrow_exposure(self) -> EscrowExposure:
        escrow = self.account_by_code(ESCROW_ACCOUNT_CODE)
        held, count = self.session.execute(
            select(func.coalesce(func.sum(Order.amount), 0), func.count(Order.id)).where(
                Order.status.in_([OrderStatus.ACTIVE.value, OrderStatus.DISPUTED.value])
            )
        ).one()
        return EscrowExposure(
            escrow_balance=escrow.balance,
            held_for_orders=int(held),
            open_order_count=count,
        )

    # ------------------------------------------------------------------
    # Canonical hash
    # ------------------------------------------------------------------

    def canonical_hash(self) -> str:
        """
        Deterministic SHA-256 over every completed transaction row.

        Rows are sorted by (operation_id, account_id, kind, amount) so the
        hash does not depend on insertion order or row ids.
        """
        rows = self.session.execute(
            select(
                LedgerTransaction.operation_id,
                LedgerTransaction.account_id,
                LedgerTransaction.kind,
                LedgerTransaction.amount,
                LedgerTransaction.order_id,
            ).where(LedgerTransaction.status == TransactionStatus.COMPLETED.value)
        ).all()
        canonical = sorted(
            [
                str(operation_id),
                str(account_id),
                str(kind),
                int(amount),
                str(order_id) if order_id else "",
            ]
            for operation_id, account_id, kind, amount, order_id in rows
        )
        payload = json.dumps(canonical, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()
