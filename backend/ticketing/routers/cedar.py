"""Cedar CMMS integration endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import (
    get_actor_id,
    get_cedar_engine_factory,
    get_integration_log,
    require_cedar_sync_engine,
)
from ..schemas import (
    ExternalWorkOrderResponse,
    IntegrationLogEntryResponse,
    RetryFailedRequest,
    SyncRequest,
    SyncResultResponse,
    SyncStatisticsResponse,
)
from ..services.cedar_sync import CedarSyncEngine
from ..services.integration_log import IntegrationLog
from ..use_cases.cedar_sync import (
    cedar_health_use_case,
    get_external_status_use_case,
    get_integration_log_use_case,
    get_sync_statistics_use_case,
    retry_failed_syncs_use_case,
    sync_ticket_use_case,
)

router = APIRouter(prefix="/cedar", tags=["cedar"])


@router.post("/tickets/{ticket_id}/sync", response_model=SyncResultResponse)
def sync_ticket(
    ticket_id: int,
    data: SyncRequest,
    db: Session = Depends(get_db),
    actor_id: int = Depends(get_actor_id),
    engine: CedarSyncEngine = Depends(require_cedar_sync_engine),
):
    """Push the ticket's current state to Cedar now."""
    result = sync_ticket_use_case(
        db=db,
        ticket_id=ticket_id,
        engine=engine,
        action=data.action,
        payload=data.payload,
        actor_id=actor_id,
    )
    return result.as_dict()


@router.get("/work-orders/{external_id}", response_model=ExternalWorkOrderResponse)
def get_work_order(
    external_id: int,
    engine: CedarSyncEngine = Depends(require_cedar_sync_engine),
):
    """Current Cedar state of a work order."""
    work_order = get_external_status_use_case(external_id=external_id, engine=engine)
    return ExternalWorkOrderResponse(
        external_id=work_order.external_id,
        external_code=work_order.external_code,
        wo_status_no=work_order.wo_status_no,
        wf_status_code=work_order.wf_status_code,
        internal_state=work_order.internal_state.value if work_order.internal_state else None,
        fields=work_order.fields,
    )


@router.get("/tickets/{ticket_id}/logs", response_model=list[IntegrationLogEntryResponse])
def get_ticket_integration_log(
    ticket_id: int,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    integration_log: IntegrationLog = Depends(get_integration_log),
):
    return get_integration_log_use_case(db=db, ticket_id=ticket_id, integration_log=integration_log, limit=limit)


@router.get("/statistics", response_model=SyncStatisticsResponse)
def get_sync_statistics(
    since: Optional[datetime] = None,
    integration_log: IntegrationLog = Depends(get_integration_log),
):
    stats = get_sync_statistics_use_case(integration_log=integration_log, since=since)
    return SyncStatisticsResponse(
        total=stats.total,
        succeeded=stats.succeeded,
        failed=stats.failed,
        by_action=stats.by_action,
        recent_errors=[IntegrationLogEntryResponse.model_validate(entry) for entry in stats.recent_errors],
    )


@router.post("/retry", response_model=list[SyncResultResponse])
def retry_failed_syncs(
    data: RetryFailedRequest,
    db: Session = Depends(get_db),
    _actor_id: int = Depends(get_actor_id),
    engine: CedarSyncEngine = Depends(require_cedar_sync_engine),
):
    results = retry_failed_syncs_use_case(db=db, engine=engine, ticket_ids=data.ticket_ids)
    return [result.as_dict() for result in results]


@router.get("/health")
def cedar_health(
    db: Session = Depends(get_db),
    integration_log: IntegrationLog = Depends(get_integration_log),
    engine_factory: Callable[[], CedarSyncEngine] = Depends(get_cedar_engine_factory),
):
    return cedar_health_use_case(db=db, engine_factory=engine_factory, integration_log=integration_log)
