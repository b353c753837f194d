"""Ticket creation and lifecycle actions used by ticket router endpoints."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..domain_errors import DomainError, InvalidTransition, NotFound, TransientStoreFailure
from ..models import Person, Ticket, TicketStatusHistory
from ..schemas import TicketCreate
from ..services.approval_authority import ApprovalAuthorityResolver, LocationDescriptor
from ..services.lifecycle_events import LifecycleEventBus, TicketLifecycleEvent
from ..services.outcomes import ActionResult
from ..services.ticket_state_machine import (
    ApprovalPolicy,
    AuthorityCheck,
    TicketAction,
    TicketStatus,
    plan_transition,
)

logger = logging.getLogger(__name__)

_TICKET_NUMBER_ATTEMPTS = 3


def _get_ticket_or_404(*, db: Session, ticket_id: int) -> Ticket:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if not ticket:
        raise NotFound("Ticket not found", code="TICKET_NOT_FOUND", details={"ticket_id": ticket_id})
    return ticket


def _get_active_person_or_404(*, db: Session, person_id: int) -> Person:
    person = db.query(Person).filter(Person.id == person_id, Person.is_active.is_(True)).first()
    if not person:
        raise NotFound("Person not found", code="PERSON_NOT_FOUND", details={"person_id": person_id})
    return person


def next_ticket_number(*, db: Session, at: datetime) -> str:
    """TKT-YYYYMMDD-NNN, sequence restarting every day."""
    prefix = f"TKT-{at:%Y%m%d}-"
    count = db.query(Ticket).filter(Ticket.ticket_number.like(f"{prefix}%")).count()
    return f"{prefix}{count + 1:03d}"


def _publish(events: LifecycleEventBus | None, event: TicketLifecycleEvent) -> list:
    if events is None:
        return []
    return events.publish(event)


def create_ticket_use_case(
    *,
    db: Session,
    data: TicketCreate,
    actor_id: int,
    events: LifecycleEventBus | None = None,
    location_separator: str = "-",
    at: datetime | None = None,
) -> ActionResult:
    """Report a new ticket in status open."""
    _get_active_person_or_404(db=db, person_id=actor_id)
    ts = at or datetime.now(timezone.utc)

    if data.location_code:
        location = LocationDescriptor.from_code(data.location_code, separator=location_separator)
    else:
        location = LocationDescriptor(data.plant_code, data.area_code, data.line_code, data.machine_code)
    if location.plant_code is None or not location.is_contiguous:
        raise DomainError(
            code="TICKET_LOCATION_INVALID",
            http_status=422,
            message="Location must name a plant and may not skip hierarchy levels",
            details=location.as_dict(),
        )

    ticket: Ticket | None = None
    for attempt in range(1, _TICKET_NUMBER_ATTEMPTS + 1):
        ticket = Ticket(
            ticket_number=next_ticket_number(db=db, at=ts),
            title=data.title,
            description=data.description,
            severity_level=data.severity_level,
            priority=data.priority,
            equipment_no=data.equipment_no,
            status=TicketStatus.OPEN.value,
            created_by=actor_id,
            created_at=ts,
            **location.as_dict(),
        )
        db.add(ticket)
        try:
            db.flush()
            db.add(
                TicketStatusHistory(
                    ticket_id=ticket.id,
                    old_status=None,
                    new_status=TicketStatus.OPEN.value,
                    action=TicketAction.CREATE.value,
                    changed_by=actor_id,
                    created_at=ts,
                )
            )
            db.commit()
            break
        except IntegrityError:
            # Concurrent reporter took the same daily sequence number.
            db.rollback()
            if attempt == _TICKET_NUMBER_ATTEMPTS:
                raise
        except OperationalError as exc:
            db.rollback()
            raise TransientStoreFailure("Ticket store unavailable, try again") from exc

    db.refresh(ticket)
    logger.info("ticket.created id=%s number=%s by=%s", ticket.id, ticket.ticket_number, actor_id)
    warnings = _publish(
        events,
        TicketLifecycleEvent(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            action=TicketAction.CREATE.value,
            old_status=None,
            new_status=ticket.status,
            actor_id=actor_id,
            occurred_at=ts,
        ),
    )
    return ActionResult(ticket=ticket, warnings=warnings)


def perform_ticket_action_use_case(
    *,
    db: Session,
    ticket_id: int,
    action: str,
    actor_id: int,
    payload: dict[str, Any] | None = None,
    events: LifecycleEventBus | None = None,
    policy: ApprovalPolicy | None = None,
    authority: AuthorityCheck | None = None,
    at: datetime | None = None,
) -> ActionResult:
    """Apply one lifecycle action; the status change and its history row commit together.

    Side effects (Cedar sync, notifications) run after the commit and only add warnings.
    """
    ticket = _get_ticket_or_404(db=db, ticket_id=ticket_id)
    plan = plan_transition(
        ticket=ticket,
        action=action,
        actor_id=actor_id,
        payload=payload,
        authority=authority or ApprovalAuthorityResolver(db),
        policy=policy,
        at=at,
    )
    ts = at or datetime.now(timezone.utc)
    stored_status = ticket.status

    try:
        # Compare-and-set on the status we validated against; a concurrent writer wins.
        rows = db.query(Ticket).filter(
            Ticket.id == ticket.id,
            Ticket.status == stored_status,
        ).update(plan.updates, synchronize_session=False)
        if rows != 1:
            db.rollback()
            raise InvalidTransition(
                "Ticket status changed concurrently; reload and retry",
                code="TICKET_STALE_STATUS",
                details={"ticket_id": ticket.id, "expected_status": stored_status},
            )
        db.add(
            TicketStatusHistory(
                ticket_id=ticket.id,
                old_status=plan.old_status.value,
                new_status=plan.new_status.value,
                action=plan.action.value,
                changed_by=actor_id,
                notes=plan.notes,
                created_at=ts,
            )
        )
        db.commit()
    except OperationalError as exc:
        db.rollback()
        raise TransientStoreFailure("Ticket store unavailable, try again") from exc

    db.refresh(ticket)
    logger.info(
        "ticket.transition id=%s action=%s %s->%s by=%s",
        ticket.id,
        plan.action.value,
        plan.old_status.value,
        plan.new_status.value,
        actor_id,
    )
    warnings = _publish(
        events,
        TicketLifecycleEvent(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            action=plan.action.value,
            old_status=plan.old_status.value,
            new_status=plan.new_status.value,
            actor_id=actor_id,
            context=plan.context,
            occurred_at=ts,
        ),
    )
    return ActionResult(ticket=ticket, warnings=warnings)


def get_ticket_use_case(*, db: Session, ticket_id: int) -> Ticket:
    return _get_ticket_or_404(db=db, ticket_id=ticket_id)


def get_ticket_history_use_case(*, db: Session, ticket_id: int) -> list[TicketStatusHistory]:
    _get_ticket_or_404(db=db, ticket_id=ticket_id)
    return (
        db.query(TicketStatusHistory)
        .filter(TicketStatusHistory.ticket_id == ticket_id)
        .order_by(TicketStatusHistory.id)
        .all()
    )
