"""
market_services.notifications -- delivery of committed domain events.

The kernel only buffers events.  This module hands them to a ``Notifier``
after the transaction commits.  A failing notifier never undoes or fails a
committed operation: every failure is logged and dispatch moves on.

``PresenceAwareNotifier`` decides per recipient whether to push over the
realtime channel (the user has a live session) or fall back to email.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from market_kernel.domain.events import (
    DomainEvent,
    Notifier,
    PresenceProvider,
    UserNotifier,
)
from market_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class PresenceAwareNotifier:
    """Routes each recipient to realtime push when present, email otherwise."""

    def __init__(
        self,
        presence: PresenceProvider,
        realtime: UserNotifier,
        email: UserNotifier,
    ) -> None:
        self.presence = presence
        self.realtime = realtime
        self.email = email

    def notify(self, event: DomainEvent) -> None:
        """Deliver to every recipient; one failing channel does not skip the rest."""
        for user_id in event.recipients:
            fields = {"event": event.name.value, "recipient": str(user_id)}
            try:
                channel = self.realtime if self.presence.is_present(user_id) else self.email
                fields["channel"] = "realtime" if channel is self.realtime else "email"
                channel.send(user_id, event)
            except Exception:
                logger.exception("notification_delivery_failed", extra=fields)
                continue
            logger.debug("notification_routed", extra=fields)


class RecordingNotifier:
    """Keeps every event it is given; for tests and local runs."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def notify(self, event: DomainEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.name.value for e in self.events]

    def for_recipient(self, user_id: UUID) -> list[DomainEvent]:
        return [e for e in self.events if user_id in e.recipients]


def dispatch(events: Iterable[DomainEvent], notifier: Notifier | None) -> int:
    """
    Hand committed events to ``notifier``.

    Returns the number of events delivered without error.  Failures are
    logged with the event name and never raised.
    """
    if notifier is None:
        return 0
    delivered = 0
    for event in events:
        try:
            notifier.notify(event)
        except Exception:
            logger.exception(
                "event_dispatch_failed",
                extra={"event": event.name.value, "recipients": [str(r) for r in event.recipients]},
            )
            continue
        delivered += 1
    return delivered
