"""Ticket endpoints."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..dependencies import get_actor_id, get_approval_policy, get_event_bus
from ..schemas import (
    TicketActionResponse,
    TicketCreate,
    TicketResponse,
    TicketStatusHistoryResponse,
)
from ..services.lifecycle_events import LifecycleEventBus
from ..services.outcomes import ActionResult
from ..services.ticket_state_machine import ApprovalPolicy
from ..use_cases.ticket_actions import (
    create_ticket_use_case,
    get_ticket_history_use_case,
    get_ticket_use_case,
    perform_ticket_action_use_case,
)

router = APIRouter(prefix="/tickets", tags=["tickets"])


def _action_response(result: ActionResult) -> TicketActionResponse:
    return TicketActionResponse(
        ticket=TicketResponse.model_validate(result.ticket),
        warnings=[warning.as_dict() for warning in result.warnings],
    )


@router.post("", response_model=TicketActionResponse, status_code=status.HTTP_201_CREATED)
def create_ticket(
    data: TicketCreate,
    db: Session = Depends(get_db),
    actor_id: int = Depends(get_actor_id),
    events: LifecycleEventBus = Depends(get_event_bus),
):
    """Report a new ticket."""
    result = create_ticket_use_case(
        db=db,
        data=data,
        actor_id=actor_id,
        events=events,
        location_separator=settings.LOCATION_CODE_SEPARATOR,
    )
    return _action_response(result)


@router.get("/{ticket_id}", response_model=TicketResponse)
def get_ticket(ticket_id: int, db: Session = Depends(get_db)):
    return get_ticket_use_case(db=db, ticket_id=ticket_id)


@router.get("/{ticket_id}/history", response_model=list[TicketStatusHistoryResponse])
def get_ticket_history(ticket_id: int, db: Session = Depends(get_db)):
    return get_ticket_history_use_case(db=db, ticket_id=ticket_id)


@router.post("/{ticket_id}/actions/{action}", response_model=TicketActionResponse)
def perform_ticket_action(
    ticket_id: int,
    action: str,
    payload: Optional[dict[str, Any]] = Body(None),
    db: Session = Depends(get_db),
    actor_id: int = Depends(get_actor_id),
    events: LifecycleEventBus = Depends(get_event_bus),
    policy: ApprovalPolicy = Depends(get_approval_policy),
):
    """Apply a lifecycle action (accept, start, escalate, resolve, reject, review, complete, close, reopen)."""
    result = perform_ticket_action_use_case(
        db=db,
        ticket_id=ticket_id,
        action=action,
        actor_id=actor_id,
        payload=payload,
        events=events,
        policy=policy,
    )
    return _action_response(result)
