"""In-process publication of committed ticket transitions to side-effect subscribers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from .outcomes import OperationWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketLifecycleEvent:
    ticket_id: int
    ticket_number: str
    action: str
    old_status: str | None
    new_status: str
    actor_id: int
    context: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[TicketLifecycleEvent], "list[OperationWarning] | None"]


class LifecycleEventBus:
    """Runs subscribers after the ticket transaction has committed.

    A subscriber failure becomes a warning on the result; it never undoes the transition.
    """

    def __init__(self, subscribers: list[Subscriber] | None = None):
        self._subscribers: list[Subscriber] = list(subscribers or [])

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def publish(self, event: TicketLifecycleEvent) -> list[OperationWarning]:
        warnings: list[OperationWarning] = []
        for subscriber in self._subscribers:
            name = getattr(subscriber, "name", None) or type(subscriber).__name__
            try:
                produced = subscriber(event)
            except Exception as exc:
                logger.exception(
                    "Lifecycle subscriber %s failed ticket=%s action=%s",
                    name,
                    event.ticket_id,
                    event.action,
                )
                warnings.append(
                    OperationWarning(
                        code="EVENT_SUBSCRIBER_FAILED",
                        message=str(exc) or type(exc).__name__,
                        details={"subscriber": name, "ticket_id": event.ticket_id},
                    )
                )
                continue
            if produced:
                warnings.extend(produced)
        return warnings


class NotificationSink(Protocol):
    def notify(self, event: TicketLifecycleEvent) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: records the notification it would have sent."""

    def notify(self, event: TicketLifecycleEvent) -> None:
        logger.info(
            "notify ticket=%s number=%s action=%s %s->%s",
            event.ticket_id,
            event.ticket_number,
            event.action,
            event.old_status,
            event.new_status,
        )


class NotificationSubscriber:
    name = "notifications"

    def __init__(self, sink: NotificationSink):
        self.sink = sink

    def __call__(self, event: TicketLifecycleEvent) -> None:
        self.sink.notify(event)
