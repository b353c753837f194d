"""
Celery worker running Cedar work-order syncs outside the request (CEDAR_SYNC_MODE=celery).
"""
from celery import Celery
from celery.exceptions import SoftTimeLimitExceeded
import logging
from .config import settings
from .database import SessionLocal

logger = logging.getLogger(__name__)

celery_app = Celery(
    "ticketing",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


@celery_app.task(name="sync_ticket_to_cedar", soft_time_limit=settings.CEDAR_SYNC_SOFT_TIME_LIMIT_SECONDS)
def sync_ticket_to_cedar(ticket_id: int, action: str, payload: dict | None = None, actor_id: int | None = None):
    """
    Run one Cedar sync for a committed transition.

    No autoretry: failures are recorded on the ticket and in the integration log,
    and re-pushed explicitly through the retry endpoint.
    """
    from .dependencies import get_cedar_sync_engine
    from .models import Ticket

    db = SessionLocal()
    try:
        ticket = db.get(Ticket, ticket_id)
        if ticket is None:
            logger.warning("cedar.sync skipped, ticket %s not found", ticket_id)
            return {"ticket_id": ticket_id, "ok": False, "operation": "skipped"}

        result = get_cedar_sync_engine().sync_ticket(db, ticket, action, payload or {}, actor_id=actor_id)
        if not result.ok:
            logger.warning("cedar.sync failed ticket=%s warnings=%s", ticket_id, result.warnings)
        return result.as_dict()

    except SoftTimeLimitExceeded:
        db.rollback()
        logger.error("cedar.sync timed out ticket=%s action=%s", ticket_id, action)
        raise

    finally:
        db.close()
