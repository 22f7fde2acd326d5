"""
ORM-Level Immutability Enforcement for ledger history.

===============================================================================
WHY THIS EXISTS
===============================================================================

Every wallet balance is backed by the completed ledger transactions that
produced it.  If a completed row could be edited or deleted, the
reconciliation check (balance == sum of completed transactions) would stop
meaning anything.  Corrections are new rows, never edits.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events:

    session.flush()
         |
         v
    [before_update event] --> _check_transaction_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_transaction_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                      | Why
--------------------|-------------------------------------|-------------------------------
LedgerTransaction   | After status = completed            | Backs the account balance
OrderDispute        | Evidence and raiser after insert    | Record of what was claimed
OrderDispute        | Resolution once resolved_at is set  | Record of how money was settled
WalletAccount       | Never deleted                       | History points at it

A pending transaction may move to completed or failed; once completed it is
frozen.  Status is checked against the attribute history so the completing
flush itself is allowed.

===============================================================================
USAGE
===============================================================================

    init_engine_from_url() registers the listeners.  Direct use:

    from market_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent

Bulk UPDATE/DELETE statements bypass mapper events; the services never issue
them against ledger rows.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from market_kernel.exceptions import ImmutabilityViolationError
from market_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _was_completed(target) -> bool:
    """True if the row was completed before this flush began."""
    from market_kernel.models.transaction import TransactionStatus

    completed = TransactionStatus.COMPLETED.value
    history = get_history(target, "status")
    if history.deleted:
        return any(_status_value(v) == completed for v in history.deleted)
    return _status_value(target.status) == completed


def _status_value(status) -> str:
    return getattr(status, "value", status)


def _check_transaction_immutability(mapper, connection, target):
    """
    Prevent updates to completed LedgerTransaction rows.

    Allows pending -> completed and pending -> failed; blocks everything
    after the row has been completed.
    """
    if _was_completed(target):
        _block(
            "LedgerTransaction",
            target.id,
            "UPDATE",
            "completed ledger transactions are append-only",
        )


def _check_transaction_delete(mapper, connection, target):
    """Prevent deletion of completed LedgerTransaction rows."""
    if _was_completed(target):
        _block(
            "LedgerTransaction",
            target.id,
            "DELETE",
            "completed ledger transactions cannot be deleted",
        )


_DISPUTE_CLAIM_FIELDS = ("order_id", "raised_by_id", "reason", "evidence", "raised_at")
_DISPUTE_RESOLUTION_FIELDS = (
    "outcome",
    "seller_share_bps",
    "note",
    "resolved_by_id",
    "resolved_at",
)


def _was_resolved(target) -> bool:
    """True if the dispute carried a resolution before this flush began."""
    history = get_history(target, "resolved_at")
    if history.has_changes():
        # a None or unloaded prior value leaves deleted empty
        return any(v is not None for v in history.deleted)
    return target.resolved_at is not None


def _check_dispute_immutability(mapper, connection, target):
    """
    Dispute claims are fixed once raised.  The resolution is written exactly
    once, by the flush that resolves the dispute, and is fixed after that.
    """
    for field in _DISPUTE_CLAIM_FIELDS:
        if get_history(target, field).has_changes():
            _block(
                "OrderDispute",
                target.id,
                "UPDATE",
                f"field '{field}' is fixed once the dispute is raised",
            )
    if not _was_resolved(target):
        return
    for field in _DISPUTE_RESOLUTION_FIELDS:
        if get_history(target, field).has_changes():
            _block(
                "OrderDispute",
                target.id,
                "UPDATE",
                f"field '{field}' is fixed once the dispute is resolved",
            )


def _check_dispute_delete(mapper, connection, target):
    _block("OrderDispute", target.id, "DELETE", "disputes are never deleted")


def _check_account_delete(mapper, connection, target):
    _block(
        "WalletAccount",
        target.id,
        "DELETE",
        "wallet accounts are never deleted; freeze them instead",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Registering twice is a no-op.
    """
    from market_kernel.models.account import WalletAccount
    from market_kernel.models.order import OrderDispute
    from market_kernel.models.transaction import LedgerTransaction

    for target, event_name, listener_fn in _listeners(
        LedgerTransaction, OrderDispute, WalletAccount
    ):
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _listeners(transaction_cls, dispute_cls, account_cls):
    return (
        (transaction_cls, "before_update", _check_transaction_immutability),
        (transaction_cls, "before_delete", _check_transaction_delete),
        (dispute_cls, "before_update", _check_dispute_immutability),
        (dispute_cls, "before_delete", _check_dispute_delete),
        (account_cls, "before_delete", _check_account_delete),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    """
    Safely remove an event listener, ignoring if not registered.

    This prevents errors when unregistering listeners that may not have been
    registered (e.g., in test scenarios with custom setup/teardown).
    """
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from market_kernel.models.account import WalletAccount
    from market_kernel.models.order import OrderDispute
    from market_kernel.models.transaction import LedgerTransaction

    for target, event_name, listener_fn in _listeners(
        LedgerTransaction, OrderDispute, WalletAccount
    ):
        _safe_remove_listener(target, event_name, listener_fn)
