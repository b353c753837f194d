"""Routes committed ticket transitions to the Cedar sync engine (inline, via Celery, or not at all)."""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from ..models import Ticket
from .cedar_sync import CedarSyncEngine
from .lifecycle_events import TicketLifecycleEvent
from .outcomes import OperationWarning

logger = logging.getLogger(__name__)

SYNC_MODES = ("inline", "celery", "off")


class CedarSyncSubscriber:
    name = "cedar_sync"

    def __init__(
        self,
        *,
        mode: str,
        session_factory: Callable[[], Session],
        engine_factory: Callable[[], CedarSyncEngine],
    ):
        if mode not in SYNC_MODES:
            raise ValueError(f"Unknown Cedar sync mode: {mode}")
        self.mode = mode
        self.session_factory = session_factory
        self.engine_factory = engine_factory

    def __call__(self, event: TicketLifecycleEvent) -> list[OperationWarning]:
        if self.mode == "off":
            return []
        if self.mode == "celery":
            from ..celery_app import sync_ticket_to_cedar

            sync_ticket_to_cedar.delay(event.ticket_id, event.action, event.context, event.actor_id)
            logger.info("cedar.sync queued ticket=%s action=%s", event.ticket_id, event.action)
            return []

        db = self.session_factory()
        try:
            ticket = db.get(Ticket, event.ticket_id)
            if ticket is None:
                return [
                    OperationWarning(
                        code="CEDAR_SYNC_TICKET_MISSING",
                        message=f"Ticket {event.ticket_id} disappeared before sync",
                    )
                ]
            result = self.engine_factory().sync_ticket(
                db,
                ticket,
                event.action,
                event.context,
                actor_id=event.actor_id,
            )
            return list(result.warnings)
        finally:
            db.close()
