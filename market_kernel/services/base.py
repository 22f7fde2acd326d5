"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services inherit
    from BaseService, receiving a SQLAlchemy ``Session`` that they use
    via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (the marketplace facade or a test harness) owns commit/rollback, so
      "accept a proposal and hold the funds" is one atomic unit.
    - Status changes go through ``_compare_and_set``: a single UPDATE whose
      WHERE clause carries the expected prior status.  Exactly one of any
      number of concurrent callers can win it.

Failure modes:
    - If a subclass calls ``session.commit()``, multi-step operations lose
      their atomicity.
"""

from abc import ABC
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from market_kernel.db.base import Base
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.domain.events import DomainEvent, EventBuffer
from market_kernel.domain.workflow import Workflow, next_state
from market_kernel.logging_config import get_logger

ModelType = TypeVar("ModelType", bound=Base)

logger = get_logger("services.base")


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
        - Domain events are only buffered here; dispatch happens after
          the caller commits.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong
          in ``market_kernel/selectors/``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        events: EventBuffer | None = None,
    ):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to SystemClock.
            events: Buffer shared by every service in one unit of work.
        """
        self.session = session
        self.clock = clock or SystemClock()
        self.events = events if events is not None else EventBuffer()

    def _emit(self, event: DomainEvent) -> None:
        self.events.record(event)

    def _compare_and_set(
        self,
        model: type[ModelType],
        entity_id: UUID,
        workflow: Workflow,
        expected: str,
        action: str,
        actor_id: UUID,
        **values: Any,
    ) -> bool:
        """
        Move ``entity_id`` from ``expected`` along ``action`` in one UPDATE.

        Returns True when this caller performed the transition, False when
        the row was no longer in ``expected`` (another caller got there
        first).  On success the in-session instance is refreshed.

        Raises:
            InvalidTransitionError: ``action`` is not legal from ``expected``.
        """
        expected = getattr(expected, "value", expected)
        target = next_state(workflow, expected, action)
        stmt = (
            update(model)
            .where(model.id == entity_id, model.status == expected)
            .values(status=target, updated_by_id=actor_id, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        won = result.rowcount == 1
        if won:
            self.session.get(model, entity_id, populate_existing=True)
        logger.info(
            "state_transition" if won else "state_transition_lost",
            extra={
                "workflow": workflow.name,
                "entity_id": str(entity_id),
                "from_state": expected,
                "to_state": target,
                "action": action,
                "actor_id": str(actor_id),
            },
        )
        return won

    def _reload(self, model: type[ModelType], entity_id: UUID) -> ModelType | None:
        """Re-read a row, discarding whatever this session believed about it."""
        return self.session.get(model, entity_id, populate_existing=True)
