"""
ORM immutability listeners and database constraints.

Completed ledger rows are append-only, dispute claims are fixed once
raised, resolutions once written, and wallet accounts are never deleted.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from market_kernel.domain.terms import DisputeOutcome
from market_kernel.exceptions import ImmutabilityViolationError
from market_kernel.models.account import WalletAccount
from market_kernel.models.order import OrderDispute
from market_kernel.models.transaction import LedgerTransaction


def _first_row(session, owner_id):
    return session.execute(
        select(LedgerTransaction)
        .join(WalletAccount, WalletAccount.id == LedgerTransaction.account_id)
        .where(WalletAccount.owner_id == owner_id)
    ).scalars().first()


class TestLedgerTransactionImmutability:

    def test_completed_row_cannot_be_updated(self, session, buyer):
        row = _first_row(session, buyer.id)
        row.amount = 1

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "LedgerTransaction"

    def test_completed_row_cannot_be_deleted(self, session, buyer):
        row = _first_row(session, buyer.id)
        session.delete(row)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_block_is_logged(self, session, buyer, captured_logs):
        row = _first_row(session, buyer.id)
        row.description = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["operation"] == "UPDATE"


class TestDisputeImmutability:

    def test_reason_is_fixed(self, session, open_order, orders, buyer):
        order = open_order()
        orders.raise_dispute(order.id, buyer, "Late")
        dispute = session.execute(
            select(OrderDispute).where(OrderDispute.order_id == order.id)
        ).scalar_one()
        dispute.reason = "Something else"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    @pytest.mark.parametrize(
        "field, value",
        [
            ("outcome", "release_to_seller"),
            ("seller_share_bps", 10_000),
            ("note", "changed my mind"),
        ],
    )
    def test_resolution_is_fixed(
        self, session, open_order, orders, disputes, buyer, arbiter, field, value
    ):
        order = open_order()
        orders.raise_dispute(order.id, buyer, "Never delivered")
        disputes.resolve(order.id, arbiter, DisputeOutcome.refund_to_buyer())
        dispute = session.execute(
            select(OrderDispute).where(OrderDispute.order_id == order.id)
        ).scalar_one()
        setattr(dispute, field, value)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert field in exc_info.value.reason

    def test_open_dispute_takes_its_resolution(
        self, session, open_order, orders, disputes, buyer, arbiter
    ):
        order = open_order()
        orders.raise_dispute(order.id, buyer, "Late")
        disputes.resolve(order.id, arbiter, DisputeOutcome.split(5000))
        dispute = session.execute(
            select(OrderDispute).where(OrderDispute.order_id == order.id)
        ).scalar_one()
        assert dispute.seller_share_bps == 5000
        assert dispute.resolved_by_id == arbiter.id

    def test_dispute_cannot_be_deleted(self, session, open_order, orders, seller):
        order = open_order()
        orders.raise_dispute(order.id, seller, "Unpaid")
        dispute = session.execute(
            select(OrderDispute).where(OrderDispute.order_id == order.id)
        ).scalar_one()
        session.delete(dispute)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAccountProtection:

    def test_account_cannot_be_deleted(self, session, ledger, buyer):
        account = session.get(WalletAccount, ledger.account_for_owner(buyer.id).id)
        session.delete(account)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_negative_balance_rejected_by_database(self, session, ledger, buyer):
        account = session.get(WalletAccount, ledger.account_for_owner(buyer.id).id)
        account.balance = -1
        with pytest.raises(IntegrityError):
            session.flush()


class TestListenerRegistration:

    def test_engine_init_registers_listeners(self, monkeypatch, db_tables):
        from sqlalchemy import event

        from market_kernel.db import engine as engine_module
        from market_kernel.db.immutability import (
            _check_transaction_immutability,
            register_immutability_listeners,
            unregister_immutability_listeners,
        )

        # keep the suite's engine in place once this test is done
        monkeypatch.setattr(engine_module, "_engine", engine_module._engine)
        monkeypatch.setattr(engine_module, "_SessionFactory", engine_module._SessionFactory)

        unregister_immutability_listeners()
        try:
            scratch = engine_module.init_engine_from_url("sqlite://")
            scratch.dispose()
            assert event.contains(
                LedgerTransaction, "before_update", _check_transaction_immutability
            )
        finally:
            register_immutability_listeners()
