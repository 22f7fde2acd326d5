"""
WalletLedger -- the only code path that changes a wallet balance.

Responsibility:
    Opens wallet accounts and applies every balance change (credits,
    debits, transfers, escrow disbursements, top-ups, payouts and
    consultation payments) together with the transaction rows that
    explain it.

Architecture position:
    Kernel > Services -- imperative shell.  Called by NegotiationService
    (never), OrderService (holds and settlements), DisputeService
    (settlements) and the marketplace facade (top-ups, payouts,
    consultations).

Invariants enforced:
    - balance == sum(amount of completed rows) for every account.  Each
      balance change is one conditional UPDATE plus one appended row.
    - No negative balances: debits are ``UPDATE ... WHERE balance >= :amount``
      and the table carries a CHECK constraint as a backstop.
    - No partial operations: every account an operation touches is
      row-locked in id order and validated before the first mutation.
    - Frozen accounts reject debits and still accept credits.

Fee convention (gross):
    A top-up of 100 with a fee of 20 writes +100 deposit and -20 fee on the
    user account and +20 fee on platform revenue; the user nets 80.  A
    payout of 100 writes -80 withdrawal and -20 fee; the user is debited
    100 and receives 80 externally.  The fee must leave a positive net.

Failure modes:
    - InvalidAmountError: amount is not a positive int.
    - InsufficientFundsError: debit exceeds the available balance.
    - AccountFrozenError: debit against a frozen account.
    - FeeExceedsAmountError: fixed fee leaves nothing to credit.
    - AccountNotFoundError: unknown account or missing system accounts.
    - ConsultationAlreadyPaidError / ConsultationNotAvailableError.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock
from market_kernel.domain.dtos import (
    AccountInfo,
    Allocation,
    ConsultationInfo,
    LedgerMetadata,
    LedgerOperation,
    TransactionRecord,
    TransferResult,
)
from market_kernel.domain.events import DomainEvent, EventBuffer, EventName
from market_kernel.domain.policy import MarketPolicy
from market_kernel.exceptions import (
    AccountFrozenError,
    AccountNotFoundError,
    ConsultationAlreadyPaidError,
    ConsultationNotAvailableError,
    FeeExceedsAmountError,
    InsufficientFundsError,
    InvalidAmountError,
)
from market_kernel.logging_config import get_logger
from market_kernel.models.account import (
    ESCROW_ACCOUNT_CODE,
    REVENUE_ACCOUNT_CODE,
    AccountKind,
    WalletAccount,
    user_account_code,
)
from market_kernel.models.consultation import UNUSED, ConsultationPayment
from market_kernel.models.transaction import (
    LedgerTransaction,
    TransactionKind,
    TransactionStatus,
)
from market_kernel.services.base import BaseService

logger = get_logger("services.wallet_ledger")

_BALANCE_FIELDS = (
    "balance",
    "lifetime_credited",
    "lifetime_debited",
    "version",
    "updated_at",
    "updated_by_id",
)


def _require_amount(amount: object) -> int:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise InvalidAmountError(amount, "must be an integer in the smallest currency unit")
    if amount <= 0:
        raise InvalidAmountError(amount)
    return amount


class WalletLedger(BaseService[WalletAccount]):
    """
    Append-only wallet ledger with escrow support.

    Contract:
        Flushes within the caller's transaction; never commits.  Returns
        DTOs, never ORM rows.

    Guarantees:
        - Every public mutating method either applies all of its rows or
          raises before touching any balance.
    """

    def __init__(
        self,
        session: Session,
        policy: MarketPolicy,
        clock: Clock | None = None,
        events: EventBuffer | None = None,
    ):
        super().__init__(session, clock, events)
        self.policy = policy
        self._system_ids: dict[str, UUID] = {}

    # =========================================================================
    # Accounts
    # =========================================================================

    def open_account(self, owner_id: UUID, actor_id: UUID) -> AccountInfo:
        """
        Create the wallet account for ``owner_id``.  Idempotent per owner.

        A concurrent opener losing the unique-constraint race re-reads the
        winner's row instead of failing.
        """
        existing = self._find_by_owner(owner_id)
        if existing is not None:
            return AccountInfo.from_model(existing)

        savepoint = self.session.begin_nested()
        try:
            account = WalletAccount(
                code=user_account_code(owner_id),
                owner_id=owner_id,
                kind=AccountKind.USER.value,
                created_by_id=actor_id,
            )
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("wallet_account_open_race", extra={"owner_id": str(owner_id)})
            existing = self._find_by_owner(owner_id)
            if existing is None:
                raise
            return AccountInfo.from_model(existing)

        logger.info(
            "wallet_account_opened",
            extra={"account_id": str(account.id), "owner_id": str(owner_id)},
        )
        return AccountInfo.from_model(account)

    def ensure_system_accounts(self, actor_id: UUID) -> tuple[AccountInfo, AccountInfo]:
        """Create the platform escrow and revenue accounts if missing."""
        escrow = self._ensure_system_account(ESCROW_ACCOUNT_CODE, AccountKind.ESCROW, actor_id)
        revenue = self._ensure_system_account(REVENUE_ACCOUNT_CODE, AccountKind.PLATFORM, actor_id)
        return escrow, revenue

    def _ensure_system_account(
        self, code: str, kind: AccountKind, actor_id: UUID
    ) -> AccountInfo:
        account = self.session.execute(
            select(WalletAccount).where(WalletAccount.code == code)
        ).scalar_one_or_none()
        if account is None:
            account = WalletAccount(code=code, owner_id=None, kind=kind.value, created_by_id=actor_id)
            self.session.add(account)
            self.session.flush()
            logger.info(
                "system_account_created",
                extra={"account_id": str(account.id), "code": code},
            )
        self._system_ids[code] = account.id
        return AccountInfo.from_model(account)

    def get_account(self, account_id: UUID) -> AccountInfo:
        account = self.session.get(WalletAccount, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return AccountInfo.from_model(account)

    def account_for_owner(self, owner_id: UUID) -> AccountInfo:
        account = self._find_by_owner(owner_id)
        if account is None:
            raise AccountNotFoundError(user_account_code(owner_id))
        return AccountInfo.from_model(account)

    def escrow_account_id(self) -> UUID:
        return self._system_account_id(ESCROW_ACCOUNT_CODE)

    def revenue_account_id(self) -> UUID:
        return self._system_account_id(REVENUE_ACCOUNT_CODE)

    def freeze_account(self, account_id: UUID, actor_id: UUID) -> AccountInfo:
        return self._set_frozen(account_id, True, actor_id)

    def unfreeze_account(self, account_id: UUID, actor_id: UUID) -> AccountInfo:
        return self._set_frozen(account_id, False, actor_id)

    def _set_frozen(self, account_id: UUID, frozen: bool, actor_id: UUID) -> AccountInfo:
        account = self._lock([account_id])[account_id]
        if account.is_frozen != frozen:
            account.is_frozen = frozen
            account.updated_by_id = actor_id
            self.session.flush()
            logger.info(
                "wallet_account_frozen" if frozen else "wallet_account_unfrozen",
                extra={"account_id": str(account_id), "actor_id": str(actor_id)},
            )
        return AccountInfo.from_model(account)

    # =========================================================================
    # Primitive operations
    # =========================================================================

    def credit(
        self,
        account_id: UUID,
        amount: int,
        kind: TransactionKind,
        metadata: LedgerMetadata,
    ) -> TransactionRecord:
        """Add ``amount`` to an account.  Allowed on frozen accounts."""
        _require_amount(amount)
        operation_id = uuid4()
        account = self._lock([account_id])[account_id]
        row = self._post(account, amount, kind, operation_id, metadata)
        self._log_operation("credit", operation_id, metadata, amount, (row,))
        return TransactionRecord.from_model(row)

    def debit(
        self,
        account_id: UUID,
        amount: int,
        kind: TransactionKind,
        metadata: LedgerMetadata,
    ) -> TransactionRecord:
        """
        Remove ``amount`` from an account.

        Raises:
            InsufficientFundsError: amount > balance; nothing is debited.
            AccountFrozenError: the account is frozen.
        """
        _require_amount(amount)
        operation_id = uuid4()
        account = self._lock([account_id])[account_id]
        self._check_debit(account, amount)
        row = self._post(account, -amount, kind, operation_id, metadata)
        self._log_operation("debit", operation_id, metadata, amount, (row,))
        return TransactionRecord.from_model(row)

    def transfer(
        self,
        from_id: UUID,
        to_id: UUID,
        amount: int,
        kind: TransactionKind,
        metadata: LedgerMetadata,
        fee: int = 0,
        fee_account_id: UUID | None = None,
        fee_kind: TransactionKind = TransactionKind.FEE,
    ) -> TransferResult:
        """
        Move ``amount`` out of ``from_id`` as one logical operation.

        The source is debited the gross ``amount``; ``to_id`` receives
        ``amount - fee`` and the fee account (platform revenue by default)
        receives ``fee``.

        Raises:
            FeeExceedsAmountError: fee >= amount.
            InsufficientFundsError / AccountFrozenError: on the source.
        """
        _require_amount(amount)
        if from_id == to_id:
            raise InvalidAmountError(amount, "source and destination accounts must differ")
        if not isinstance(fee, int) or isinstance(fee, bool) or fee < 0:
            raise InvalidAmountError(fee, "fee must be a non-negative integer")
        net = amount - fee
        if net <= 0:
            raise FeeExceedsAmountError(amount=amount, fee=fee)
        if fee and fee_account_id is None:
            fee_account_id = self.revenue_account_id()

        operation_id = uuid4()
        ids = [from_id, to_id] + ([fee_account_id] if fee else [])
        accounts = self._lock(ids)
        source = accounts[from_id]
        self._check_debit(source, amount)

        debit = self._post(source, -amount, kind, operation_id, metadata, related_account_id=to_id)
        credit = self._post(accounts[to_id], net, kind, operation_id, metadata, related_account_id=from_id)
        fee_row = None
        if fee:
            fee_row = self._post(
                accounts[fee_account_id], fee, fee_kind, operation_id, metadata,
                related_account_id=from_id,
            )
        rows = (debit, credit) + ((fee_row,) if fee_row is not None else ())
        self._log_operation("transfer", operation_id, metadata, amount, rows)
        return TransferResult(
            debit=TransactionRecord.from_model(debit),
            credit=TransactionRecord.from_model(credit),
            fee=TransactionRecord.from_model(fee_row) if fee_row is not None else None,
        )

    def disburse(
        self,
        from_id: UUID,
        allocations: Sequence[Allocation],
        metadata: LedgerMetadata,
        debit_kind: TransactionKind = TransactionKind.PAYMENT,
    ) -> tuple[TransactionRecord, ...]:
        """
        Pay one source out to several parties in a single operation.

        Writes one debit of the source for the allocation total and one
        credit per non-zero allocation.  Used for escrow settlement, where
        seller, platform and buyer may each receive a share.

        Returns:
            The debit record followed by the credit records, in allocation order.
        """
        legs = [a for a in allocations if a.amount != 0]
        for leg in legs:
            _require_amount(leg.amount)
        if not legs:
            raise InvalidAmountError(0, "disbursement needs at least one positive allocation")
        total = sum(leg.amount for leg in legs)

        operation_id = uuid4()
        accounts = self._lock([from_id] + [leg.account_id for leg in legs])
        source = accounts[from_id]
        self._check_debit(source, total)

        related = legs[0].account_id if len(legs) == 1 else None
        rows = [self._post(source, -total, debit_kind, operation_id, metadata, related_account_id=related)]
        for leg in legs:
            rows.append(
                self._post(
                    accounts[leg.account_id], leg.amount, TransactionKind(leg.kind),
                    operation_id, metadata, related_account_id=from_id,
                )
            )
        self._log_operation("disburse", operation_id, metadata, total, rows)
        return tuple(TransactionRecord.from_model(r) for r in rows)

    # =========================================================================
    # Wallet operations
    # =========================================================================

    def top_up(
        self,
        account_id: UUID,
        amount: int,
        actor_id: UUID,
        payment_method: str | None = None,
        reference: str | None = None,
    ) -> LedgerOperation:
        """
        Deposit ``amount`` (gross) and charge the fixed top-up fee.

        Raises:
            FeeExceedsAmountError: amount <= topup_fee.
        """
        _require_amount(amount)
        fee = self.policy.topup_fee
        net = amount - fee
        if net <= 0:
            raise FeeExceedsAmountError(amount=amount, fee=fee)

        operation_id = uuid4()
        revenue_id = self.revenue_account_id() if fee else None
        accounts = self._lock([account_id] + ([revenue_id] if fee else []))
        account = accounts[account_id]
        description = f"Wallet top-up via {payment_method}" if payment_method else "Wallet top-up"
        metadata = LedgerMetadata(actor_id=actor_id, description=description, reference=reference)

        rows = [self._post(account, amount, TransactionKind.DEPOSIT, operation_id, metadata)]
        if fee:
            fee_meta = LedgerMetadata(actor_id=actor_id, description="Top-up fee", reference=reference)
            # The fee comes out of money deposited in this same operation
            rows.append(
                self._post(
                    account, -fee, TransactionKind.FEE, operation_id, fee_meta,
                    related_account_id=revenue_id, check_frozen=False,
                )
            )
            rows.append(
                self._post(
                    accounts[revenue_id], fee, TransactionKind.FEE, operation_id, fee_meta,
                    related_account_id=account_id,
                )
            )
        self._log_operation("top_up", operation_id, metadata, amount, rows)
        if account.owner_id is not None:
            self._emit(
                DomainEvent.create(
                    EventName.WALLET_TOPPED_UP,
                    self.clock.now(),
                    [account.owner_id],
                    account_id=account_id,
                    amount=amount,
                    fee=fee,
                    net_amount=net,
                    balance=account.balance,
                )
            )
        return LedgerOperation(
            operation_id=operation_id,
            records=tuple(TransactionRecord.from_model(r) for r in rows),
            net_amount=net,
        )

    def withdraw(
        self,
        account_id: UUID,
        amount: int,
        actor_id: UUID,
        reference: str | None = None,
    ) -> LedgerOperation:
        """
        Pay ``amount`` (gross) out of the wallet, keeping the payout fee.

        Raises:
            FeeExceedsAmountError: amount <= payout_fee.
            InsufficientFundsError / AccountFrozenError.
        """
        _require_amount(amount)
        fee = self.policy.payout_fee
        net = amount - fee
        if net <= 0:
            raise FeeExceedsAmountError(amount=amount, fee=fee)

        operation_id = uuid4()
        revenue_id = self.revenue_account_id() if fee else None
        accounts = self._lock([account_id] + ([revenue_id] if fee else []))
        account = accounts[account_id]
        self._check_debit(account, amount)
        metadata = LedgerMetadata(actor_id=actor_id, description="Wallet payout", reference=reference)

        rows = [self._post(account, -net, TransactionKind.WITHDRAWAL, operation_id, metadata)]
        if fee:
            fee_meta = LedgerMetadata(actor_id=actor_id, description="Payout fee", reference=reference)
            rows.append(
                self._post(account, -fee, TransactionKind.FEE, operation_id, fee_meta,
                           related_account_id=revenue_id)
            )
            rows.append(
                self._post(accounts[revenue_id], fee, TransactionKind.FEE, operation_id, fee_meta,
                           related_account_id=account_id)
            )
        self._log_operation("withdraw", operation_id, metadata, amount, rows)
        return LedgerOperation(
            operation_id=operation_id,
            records=tuple(TransactionRecord.from_model(r) for r in rows),
            net_amount=net,
        )

    def pay_consultation(
        self,
        user_id: UUID,
        conversation_id: str,
        actor_id: UUID,
    ) -> ConsultationInfo:
        """
        Charge the consultation fee and record a redeemable payment.

        Raises:
            ConsultationAlreadyPaidError: an unused payment already exists
                for (user, conversation), including one committed by a
                concurrent caller.
            InsufficientFundsError / AccountFrozenError.
        """
        account = self._find_by_owner(user_id)
        if account is None:
            raise AccountNotFoundError(user_account_code(user_id))
        if self._unused_consultation(user_id, conversation_id) is not None:
            raise ConsultationAlreadyPaidError(str(user_id), conversation_id)

        fee = self.policy.consultation_fee
        revenue_id = self.revenue_account_id()
        operation_id = uuid4()
        accounts = self._lock([account.id, revenue_id])
        self._check_debit(accounts[account.id], fee)
        metadata = LedgerMetadata(
            actor_id=actor_id,
            conversation_id=conversation_id,
            description="Consultation payment",
        )

        savepoint = self.session.begin_nested()
        try:
            debit = self._post(
                accounts[account.id], -fee, TransactionKind.CONSULTATION, operation_id,
                metadata, related_account_id=revenue_id,
            )
            credit = self._post(
                accounts[revenue_id], fee, TransactionKind.CONSULTATION, operation_id,
                metadata, related_account_id=account.id,
            )
            payment = ConsultationPayment(
                user_id=user_id,
                conversation_id=conversation_id,
                amount=fee,
                transaction_id=debit.id,
                used=False,
                unused_marker=UNUSED,
                created_by_id=actor_id,
            )
            self.session.add(payment)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.warning(
                "consultation_payment_race_lost",
                extra={"user_id": str(user_id), "conversation_id": conversation_id},
            )
            raise ConsultationAlreadyPaidError(str(user_id), conversation_id)

        self._log_operation("pay_consultation", operation_id, metadata, fee, (debit, credit))
        return ConsultationInfo.from_model(payment)

    def use_consultation(
        self,
        user_id: UUID,
        conversation_id: str,
        meeting_link: str,
        meeting_at: datetime | None,
        actor_id: UUID,
    ) -> ConsultationInfo:
        """
        Redeem the unused consultation payment for a scheduled meeting.

        The meeting link comes from the meeting collaborator; the ledger only
        records it.

        Raises:
            ConsultationNotAvailableError: no unused payment (or a concurrent
                caller redeemed it first).
        """
        payment = self._unused_consultation(user_id, conversation_id)
        if payment is None:
            raise ConsultationNotAvailableError(str(user_id), conversation_id)

        result = self.session.execute(
            update(ConsultationPayment)
            .where(
                ConsultationPayment.id == payment.id,
                ConsultationPayment.used.is_(False),
            )
            .values(
                used=True,
                unused_marker=None,
                meeting_link=meeting_link,
                meeting_at=meeting_at,
                scheduled_at=self.clock.now(),
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConsultationNotAvailableError(str(user_id), conversation_id)

        payment = self._reload(ConsultationPayment, payment.id)
        logger.info(
            "consultation_scheduled",
            extra={
                "payment_id": str(payment.id),
                "user_id": str(user_id),
                "conversation_id": conversation_id,
            },
        )
        return ConsultationInfo.from_model(payment)

    # =========================================================================
    # Internals
    # =========================================================================

    def _find_by_owner(self, owner_id: UUID) -> WalletAccount | None:
        return self.session.execute(
            select(WalletAccount).where(WalletAccount.owner_id == owner_id)
        ).scalar_one_or_none()

    def _system_account_id(self, code: str) -> UUID:
        if code not in self._system_ids:
            account_id = self.session.execute(
                select(WalletAccount.id).where(WalletAccount.code == code)
            ).scalar_one_or_none()
            if account_id is None:
                raise AccountNotFoundError(code)
            self._system_ids[code] = account_id
        return self._system_ids[code]

    def _unused_consultation(
        self, user_id: UUID, conversation_id: str
    ) -> ConsultationPayment | None:
        return self.session.execute(
            select(ConsultationPayment).where(
                ConsultationPayment.user_id == user_id,
                ConsultationPayment.conversation_id == conversation_id,
                ConsultationPayment.used.is_(False),
            )
        ).scalar_one_or_none()

    def _lock(self, account_ids: Iterable[UUID]) -> dict[UUID, WalletAccount]:
        """
        Row-lock every account in id order and return them fresh.

        A single lock order across all operations rules out lock-order
        deadlocks between concurrent ledger operations.
        """
        ids = sorted(set(account_ids), key=str)
        rows = self.session.execute(
            select(WalletAccount)
            .where(WalletAccount.id.in_(ids))
            .order_by(WalletAccount.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        found = {row.id: row for row in rows}
        for account_id in ids:
            if account_id not in found:
                raise AccountNotFoundError(str(account_id))
        return found

    def _check_debit(self, account: WalletAccount, amount: int) -> None:
        if account.is_frozen:
            raise AccountFrozenError(str(account.id))
        if account.balance < amount:
            raise InsufficientFundsError(
                account_id=str(account.id),
                available=account.balance,
                requested=amount,
            )

    def _post(
        self,
        account: WalletAccount,
        delta: int,
        kind: TransactionKind,
        operation_id: UUID,
        metadata: LedgerMetadata,
        related_account_id: UUID | None = None,
        check_frozen: bool = True,
    ) -> LedgerTransaction:
        """
        Apply one signed balance change and append its transaction row.

        The UPDATE re-checks the funds condition in SQL, so even a caller
        that skipped ``_check_debit`` cannot drive a balance negative.
        """
        conditions = [WalletAccount.id == account.id]
        if delta < 0:
            amount = -delta
            conditions.append(WalletAccount.balance >= amount)
            if check_frozen:
                conditions.append(WalletAccount.is_frozen.is_(False))
            values = {
                "balance": WalletAccount.balance - amount,
                "lifetime_debited": WalletAccount.lifetime_debited + amount,
            }
        else:
            values = {
                "balance": WalletAccount.balance + delta,
                "lifetime_credited": WalletAccount.lifetime_credited + delta,
            }
        values["version"] = WalletAccount.version + 1
        values["updated_by_id"] = metadata.actor_id

        result = self.session.execute(
            update(WalletAccount)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            fresh = self._reload(WalletAccount, account.id)
            if check_frozen and fresh.is_frozen:
                raise AccountFrozenError(str(account.id))
            raise InsufficientFundsError(
                account_id=str(account.id),
                available=fresh.balance,
                requested=-delta,
            )

        self.session.expire(account, list(_BALANCE_FIELDS))
        row = LedgerTransaction(
            account_id=account.id,
            kind=TransactionKind(kind).value,
            amount=delta,
            status=TransactionStatus.COMPLETED.value,
            balance_after=account.balance,
            related_account_id=related_account_id,
            order_id=metadata.order_id,
            conversation_id=metadata.conversation_id,
            operation_id=operation_id,
            description=metadata.description,
            reference=metadata.reference,
            occurred_at=self.clock.now(),
            created_by_id=metadata.actor_id,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def _log_operation(
        self,
        operation: str,
        operation_id: UUID,
        metadata: LedgerMetadata,
        amount: int,
        rows: Sequence[LedgerTransaction],
    ) -> None:
        logger.info(
            "ledger_operation_applied",
            extra={
                "operation": operation,
                "operation_id": str(operation_id),
                "amount": amount,
                "row_count": len(rows),
                "order_id": str(metadata.order_id) if metadata.order_id else None,
                "actor_id": str(metadata.actor_id),
            },
        )
