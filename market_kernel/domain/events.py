"""
Domain events -- what happened, for whoever needs to be told.

Architecture position:
    Kernel > Domain -- pure value objects and ports, zero I/O.

Services append events to an ``EventBuffer`` while they work.  The buffer
is handed to a ``Notifier`` only after the enclosing transaction commits,
so nobody is ever told about a change that was rolled back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Protocol, runtime_checkable
from uuid import UUID


class EventName(str, Enum):
    PROPOSAL_SUBMITTED = "proposal_submitted"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    OFFER_CREATED = "offer_created"
    OFFER_ACCEPTED = "offer_accepted"
    ORDER_OPENED = "order_opened"
    WORK_SUBMITTED = "work_submitted"
    ORDER_COMPLETED = "order_completed"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESOLVED = "dispute_resolved"
    WALLET_TOPPED_UP = "wallet_topped_up"


@dataclass(frozen=True)
class DomainEvent:
    """
    Immutable notification payload.

    ``recipients`` are user ids the notifier should reach; ``payload`` is
    frozen at construction.
    """

    name: EventName
    occurred_at: datetime
    recipients: tuple[UUID, ...]
    payload: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.payload, MappingProxyType):
            object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @classmethod
    def create(
        cls,
        name: EventName,
        occurred_at: datetime,
        recipients: tuple[UUID, ...] | list[UUID],
        **payload: Any,
    ) -> DomainEvent:
        return cls(
            name=name,
            occurred_at=occurred_at,
            recipients=tuple(recipients),
            payload=MappingProxyType(payload),
        )


class EventBuffer:
    """Ordered, append-only collection of events raised inside one transaction."""

    def __init__(self) -> None:
        self._events: list[DomainEvent] = []

    def record(self, event: DomainEvent) -> None:
        self._events.append(event)

    def drain(self) -> tuple[DomainEvent, ...]:
        """Return every buffered event and empty the buffer."""
        events = tuple(self._events)
        self._events.clear()
        return events

    def discard(self) -> None:
        self._events.clear()

    def names(self) -> tuple[EventName, ...]:
        return tuple(e.name for e in self._events)

    def __iter__(self) -> Iterator[DomainEvent]:
        return iter(tuple(self._events))

    def __len__(self) -> int:
        return len(self._events)


@runtime_checkable
class Notifier(Protocol):
    """Delivery channel for committed domain events."""

    def notify(self, event: DomainEvent) -> None:
        ...


@runtime_checkable
class PresenceProvider(Protocol):
    """Answers whether a user currently holds a live realtime session."""

    def is_present(self, user_id: UUID) -> bool:
        ...


@runtime_checkable
class UserNotifier(Protocol):
    """Channel that reaches a single user (realtime push or email)."""

    def send(self, user_id: UUID, event: DomainEvent) -> None:
        ...
