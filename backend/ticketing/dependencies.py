"""FastAPI dependencies: acting person and the wired ticketing/Cedar services."""
from __future__ import annotations

from functools import lru_cache
from typing import Callable

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .config import settings
from .database import SessionLocal, get_cedar_engine, get_db
from .domain_errors import DomainError
from .models import Person
from .services.cedar_sync import CedarSyncEngine, CedarSyncOptions
from .services.integration_log import IntegrationLog
from .services.lifecycle_events import LifecycleEventBus, LoggingNotificationSink, NotificationSubscriber
from .services.status_mapping import StatusMappingTable, status_mapping_from_settings
from .services.sync_dispatch import CedarSyncSubscriber
from .services.ticket_state_machine import ApprovalPolicy


def get_actor_id(
    x_person_id: int | None = Header(None, alias="X-Person-Id"),
    db: Session = Depends(get_db),
) -> int:
    """Acting person; authentication itself happens upstream of this service."""
    if x_person_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Person-Id header is required",
        )
    person = db.query(Person).filter(Person.id == x_person_id).first()
    if not person or not person.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown or inactive person",
        )
    return person.id


@lru_cache()
def get_status_mapping() -> StatusMappingTable:
    return status_mapping_from_settings(settings)


@lru_cache()
def get_approval_policy() -> ApprovalPolicy:
    return ApprovalPolicy.from_settings(settings)


@lru_cache()
def get_integration_log() -> IntegrationLog:
    return IntegrationLog(SessionLocal)


@lru_cache()
def get_cedar_sync_engine() -> CedarSyncEngine:
    """Raises RuntimeError while CEDAR_DATABASE_URL is unset."""
    return CedarSyncEngine(
        cedar_engine=get_cedar_engine(),
        integration_log=get_integration_log(),
        mapping=get_status_mapping(),
        options=CedarSyncOptions.from_settings(settings),
    )


@lru_cache()
def get_event_bus() -> LifecycleEventBus:
    return LifecycleEventBus(
        [
            CedarSyncSubscriber(
                mode=settings.CEDAR_SYNC_MODE,
                session_factory=SessionLocal,
                engine_factory=get_cedar_sync_engine,
            ),
            NotificationSubscriber(LoggingNotificationSink()),
        ]
    )


def get_cedar_engine_factory() -> Callable[[], CedarSyncEngine]:
    """Health probes build the engine themselves so a missing URL is reported, not raised."""
    return get_cedar_sync_engine


def require_cedar_sync_engine() -> CedarSyncEngine:
    try:
        return get_cedar_sync_engine()
    except RuntimeError as exc:
        raise DomainError(
            code="CEDAR_NOT_CONFIGURED",
            http_status=503,
            message=str(exc),
        ) from exc
