"""Cedar integration use-cases: manual sync, WO lookup, log queries, retry and health."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain_errors import ExternalSyncFailure, NotFound
from ..models import IntegrationLogEntry, Ticket
from ..services.cedar_sync import CedarSyncEngine, ExternalWorkOrder
from ..services.integration_log import IntegrationLog, SyncStatistics
from ..services.outcomes import SyncResult

logger = logging.getLogger(__name__)

RESYNC_ACTION = "resync"


def _get_ticket_or_404(*, db: Session, ticket_id: int) -> Ticket:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if not ticket:
        raise NotFound("Ticket not found", code="TICKET_NOT_FOUND", details={"ticket_id": ticket_id})
    return ticket


def ticket_sync_payload(ticket: Ticket) -> dict[str, Any]:
    """Work-order fields already recorded on the ticket, for full re-syncs."""
    fields = {
        "actual_start_at": ticket.actual_start_at,
        "actual_finish_at": ticket.actual_finish_at,
        "actual_duration_minutes": ticket.actual_duration_minutes,
        "failure_cause": ticket.failure_cause,
        "repair_procedure": ticket.repair_procedure,
        "close_reason": ticket.close_reason,
    }
    return {name: value for name, value in fields.items() if value is not None}


def sync_ticket_use_case(
    *,
    db: Session,
    ticket_id: int,
    engine: CedarSyncEngine,
    action: str = RESYNC_ACTION,
    payload: dict[str, Any] | None = None,
    actor_id: int | None = None,
) -> SyncResult:
    """Sync on demand. Here the sync is the operation, so failure is an error, not a warning."""
    ticket = _get_ticket_or_404(db=db, ticket_id=ticket_id)
    result = engine.sync_ticket(
        db,
        ticket,
        action,
        payload if payload else ticket_sync_payload(ticket),
        actor_id=actor_id,
    )
    if not result.ok:
        raise ExternalSyncFailure(
            result.warnings[0].message if result.warnings else "Cedar sync failed",
            details=result.as_dict(),
        )
    return result


def get_external_status_use_case(*, external_id: int, engine: CedarSyncEngine) -> ExternalWorkOrder:
    return engine.get_external_status(external_id)


def get_integration_log_use_case(
    *,
    db: Session,
    ticket_id: int,
    integration_log: IntegrationLog,
    limit: int = 100,
) -> list[IntegrationLogEntry]:
    _get_ticket_or_404(db=db, ticket_id=ticket_id)
    return integration_log.for_ticket(ticket_id, limit=limit)


def get_sync_statistics_use_case(
    *,
    integration_log: IntegrationLog,
    since: datetime | None = None,
) -> SyncStatistics:
    return integration_log.statistics(since=since)


def retry_failed_syncs_use_case(
    *,
    db: Session,
    engine: CedarSyncEngine,
    ticket_ids: list[int] | None = None,
    limit: int = 50,
) -> list[SyncResult]:
    """Re-push every ticket whose last sync failed; one failure does not stop the rest."""
    query = db.query(Ticket).filter(Ticket.external_sync_status == "error")
    if ticket_ids:
        query = query.filter(Ticket.id.in_(ticket_ids))
    tickets = query.order_by(Ticket.external_last_sync_at, Ticket.id).limit(limit).all()

    results = []
    for ticket in tickets:
        results.append(engine.sync_ticket(db, ticket, RESYNC_ACTION, ticket_sync_payload(ticket)))
    logger.info(
        "cedar.retry attempted=%s succeeded=%s",
        len(results),
        sum(1 for result in results if result.ok),
    )
    return results


def cedar_health_use_case(
    *,
    db: Session,
    engine_factory: Callable[[], CedarSyncEngine],
    integration_log: IntegrationLog,
) -> dict[str, Any]:
    """Reachability of both databases plus the newest integration log entry."""
    health: dict[str, Any] = {"status": "ok", "database": "ok", "cedar": "ok", "last_sync_at": None}

    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("health.database failed error=%s", exc)
        health.update(status="error", database="unavailable")

    try:
        engine_factory().ping()
    except (SQLAlchemyError, RuntimeError) as exc:
        logger.warning("health.cedar failed error=%s", exc)
        health.update(status="error", cedar="unavailable", cedar_error=str(exc))

    if health["database"] == "ok":
        latest = integration_log.latest_entry_at()
        health["last_sync_at"] = latest.isoformat() if latest else None
    return health
