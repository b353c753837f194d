"""Ticket lifecycle rules: legal edges, approval guards, payload validation and stage fields."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, NamedTuple, Protocol

from pydantic import BaseModel, ValidationError

from ..domain_errors import InvalidTransition, Unauthorized, ValidationFailed
from ..schemas import (
    AcceptPayload,
    ClosePayload,
    CompletePayload,
    EscalatePayload,
    RejectPayload,
    ReopenPayload,
    ResolvePayload,
    ReviewPayload,
    StartPayload,
)
from .approval_authority import LocationDescriptor


class TicketStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    REJECTED_PENDING_L3_REVIEW = "rejected_pending_l3_review"
    REJECTED_FINAL = "rejected_final"
    REVIEWED = "reviewed"
    COMPLETED = "completed"
    CLOSED = "closed"
    REOPENED_IN_PROGRESS = "reopened_in_progress"


class TicketAction(str, Enum):
    CREATE = "create"
    ACCEPT = "accept"
    START = "start"
    ESCALATE = "escalate"
    RESOLVE = "resolve"
    REJECT = "reject"
    REVIEW = "review"
    COMPLETE = "complete"
    CLOSE = "close"
    REOPEN = "reopen"


TERMINAL_STATUSES: frozenset[TicketStatus] = frozenset({TicketStatus.CLOSED, TicketStatus.REJECTED_FINAL})

# Values written by older clients.
_LEGACY_STATUSES: dict[str, TicketStatus] = {
    "finished": TicketStatus.RESOLVED,
    "accepted": TicketStatus.ASSIGNED,
    "planed": TicketStatus.ASSIGNED,
}


def normalize_ticket_status(status: str | TicketStatus | None) -> TicketStatus:
    if isinstance(status, TicketStatus):
        return status
    if not status:
        return TicketStatus.OPEN
    value = str(status).strip().lower()
    if value in _LEGACY_STATUSES:
        return _LEGACY_STATUSES[value]
    try:
        return TicketStatus(value)
    except ValueError:
        raise InvalidTransition(
            f"Unknown ticket status: {value}",
            code="TICKET_UNKNOWN_STATUS",
        ) from None


def parse_action(action: str | TicketAction) -> TicketAction:
    try:
        parsed = TicketAction(str(action.value if isinstance(action, TicketAction) else action).strip().lower())
    except ValueError:
        raise InvalidTransition(f"Unknown ticket action: {action}", code="TICKET_UNKNOWN_ACTION") from None
    if parsed is TicketAction.CREATE:
        raise InvalidTransition("Tickets are created, not transitioned", code="TICKET_UNKNOWN_ACTION")
    return parsed


@dataclass(frozen=True)
class ApprovalPolicy:
    """Approval levels that satisfy each approval-gated guard."""

    accept: tuple[int, ...] = (2,)
    escalate: tuple[int, ...] = (3,)
    reject: tuple[int, ...] = (2, 3)
    reject_final: tuple[int, ...] = (3, 4)
    complete: tuple[int, ...] = (3, 4)
    close: tuple[int, ...] = (4,)
    reopen: tuple[int, ...] = (2, 3, 4)

    @classmethod
    def from_settings(cls, settings: Any) -> "ApprovalPolicy":
        return cls(**settings.approval_levels)

    def levels_for(self, guard: str) -> tuple[int, ...]:
        return getattr(self, guard)


class AuthorityCheck(Protocol):
    def is_authorized_any(self, person_id: int, levels: Iterable[int], location: LocationDescriptor) -> bool:
        ...


class _Edge(NamedTuple):
    sources: frozenset[TicketStatus]
    target: TicketStatus
    guard: str


def _edge(sources: Iterable[TicketStatus], target: TicketStatus, guard: str) -> _Edge:
    return _Edge(frozenset(sources), target, guard)


S = TicketStatus

# Guards: approval-policy names, or "assignee" / "reporter" / combinations below.
_EDGES: dict[TicketAction, tuple[_Edge, ...]] = {
    TicketAction.ACCEPT: (
        _edge({S.OPEN}, S.ASSIGNED, "accept"),
        _edge({S.REJECTED_PENDING_L3_REVIEW}, S.ASSIGNED, "reject_final"),
    ),
    TicketAction.START: (
        _edge({S.ASSIGNED, S.ESCALATED}, S.IN_PROGRESS, "assignee"),
    ),
    TicketAction.ESCALATE: (
        _edge({S.ASSIGNED, S.IN_PROGRESS, S.REOPENED_IN_PROGRESS}, S.ESCALATED, "assignee_or_accept"),
    ),
    TicketAction.RESOLVE: (
        _edge({S.IN_PROGRESS, S.ESCALATED, S.REOPENED_IN_PROGRESS}, S.RESOLVED, "assignee"),
    ),
    TicketAction.REJECT: (
        _edge({S.OPEN, S.RESOLVED}, S.REJECTED_PENDING_L3_REVIEW, "reject"),
        _edge({S.REJECTED_PENDING_L3_REVIEW}, S.REJECTED_FINAL, "reject_final"),
    ),
    TicketAction.REVIEW: (
        _edge({S.RESOLVED}, S.REVIEWED, "reporter"),
    ),
    TicketAction.COMPLETE: (
        _edge({S.REVIEWED}, S.COMPLETED, "complete"),
    ),
    TicketAction.CLOSE: (
        _edge({S.REVIEWED, S.COMPLETED}, S.CLOSED, "close"),
    ),
    TicketAction.REOPEN: (
        _edge({S.CLOSED, S.REJECTED_FINAL}, S.REOPENED_IN_PROGRESS, "reporter_or_reopen"),
    ),
}

PAYLOAD_MODELS: dict[TicketAction, type[BaseModel]] = {
    TicketAction.ACCEPT: AcceptPayload,
    TicketAction.START: StartPayload,
    TicketAction.ESCALATE: EscalatePayload,
    TicketAction.RESOLVE: ResolvePayload,
    TicketAction.REJECT: RejectPayload,
    TicketAction.REVIEW: ReviewPayload,
    TicketAction.COMPLETE: CompletePayload,
    TicketAction.CLOSE: ClosePayload,
    TicketAction.REOPEN: ReopenPayload,
}


def legal_edges() -> set[tuple[TicketStatus, TicketStatus]]:
    """Every (from, to) pair any action can produce."""
    return {(source, edge.target) for edges in _EDGES.values() for edge in edges for source in edge.sources}


def allowed_actions(status: str | TicketStatus) -> list[TicketAction]:
    current = normalize_ticket_status(status)
    return [action for action, edges in _EDGES.items() if any(current in edge.sources for edge in edges)]


def find_edge(action: TicketAction, status: str | TicketStatus) -> _Edge:
    current = normalize_ticket_status(status)
    for edge in _EDGES.get(action, ()):
        if current in edge.sources:
            return edge
    raise InvalidTransition(
        f"Action '{action.value}' is not allowed from status '{current.value}'",
        details={"action": action.value, "status": current.value},
    )


def parse_action_payload(action: TicketAction, payload: dict[str, Any] | None) -> BaseModel:
    model = PAYLOAD_MODELS[action]
    try:
        return model.model_validate(payload or {})
    except ValidationError as exc:
        errors = [
            {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
            for error in exc.errors()
        ]
        raise ValidationFailed(
            f"Invalid payload for action '{action.value}'",
            details={"action": action.value, "errors": errors},
        ) from None


@dataclass(frozen=True)
class TransitionPlan:
    """Everything a use-case needs to commit one transition atomically."""

    action: TicketAction
    old_status: TicketStatus
    new_status: TicketStatus
    updates: dict[str, Any]
    notes: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


def _require(condition: bool, message: str, *, code: str, details: dict[str, Any]) -> None:
    if not condition:
        raise Unauthorized(message, code=code, details=details)


def _check_guard(
    *,
    guard: str,
    ticket: Any,
    actor_id: int,
    authority: AuthorityCheck,
    policy: ApprovalPolicy,
    location: LocationDescriptor,
    action: TicketAction,
) -> None:
    details = {"action": action.value, "actor_id": actor_id}
    if guard == "assignee":
        _require(
            ticket.assigned_to == actor_id,
            "Only the assigned person can perform this action",
            code="TICKET_NOT_ASSIGNED",
            details=details,
        )
        return
    if guard == "reporter":
        _require(
            ticket.created_by == actor_id,
            "Only the reporter can perform this action",
            code="TICKET_REPORTER_REQUIRED",
            details=details,
        )
        return
    if guard == "assignee_or_accept":
        _require(
            ticket.assigned_to == actor_id
            or authority.is_authorized_any(actor_id, policy.accept, location),
            "Only the assignee or an approver for this location can escalate",
            code="TICKET_NOT_ASSIGNED",
            details=details,
        )
        return
    if guard == "reporter_or_reopen":
        _require(
            ticket.created_by == actor_id
            or authority.is_authorized_any(actor_id, policy.reopen, location),
            "Only the reporter or an approver for this location can reopen",
            code="APPROVAL_AUTHORITY_REQUIRED",
            details=details,
        )
        return

    levels = policy.levels_for(guard)
    _require(
        authority.is_authorized_any(actor_id, levels, location),
        f"Approval level {'/'.join(str(level) for level in levels)} required for this location",
        code="APPROVAL_AUTHORITY_REQUIRED",
        details={**details, "required_levels": list(levels)},
    )


def _present(**fields: Any) -> dict[str, Any]:
    return {name: value for name, value in fields.items() if value is not None}


def _stage_updates(
    *,
    action: TicketAction,
    actor_id: int,
    data: BaseModel,
    at: datetime,
) -> dict[str, Any]:
    if action is TicketAction.ACCEPT:
        return {"accepted_by": actor_id, "accepted_at": at, "assigned_to": data.assigned_to or actor_id}
    if action is TicketAction.START:
        return {"started_by": actor_id, "actual_start_at": data.actual_start_at}
    if action is TicketAction.ESCALATE:
        return {
            "escalated_by": actor_id,
            "escalated_at": at,
            "escalated_to": data.escalated_to,
            "escalation_reason": data.escalation_reason,
            "assigned_to": data.escalated_to,
        }
    if action is TicketAction.RESOLVE:
        return {
            "finished_by": actor_id,
            "finished_at": at,
            "actual_finish_at": data.actual_finish_at,
            **_present(
                actual_start_at=data.actual_start_at,
                actual_duration_minutes=data.actual_duration_minutes,
                failure_cause=data.failure_cause,
                repair_procedure=data.repair_procedure,
                completion_notes=data.completion_notes,
                cost_avoidance=data.cost_avoidance,
                downtime_avoidance_hours=data.downtime_avoidance_hours,
            ),
        }
    if action is TicketAction.REJECT:
        return {"rejected_by": actor_id, "rejected_at": at, "rejection_reason": data.rejection_reason}
    if action is TicketAction.REVIEW:
        return {
            "reviewed_by": actor_id,
            "reviewed_at": at,
            **_present(review_comment=data.review_comment, satisfaction_rating=data.satisfaction_rating),
        }
    if action is TicketAction.COMPLETE:
        return {"completed_by": actor_id, "completed_at": at}
    if action is TicketAction.CLOSE:
        return {"closed_by": actor_id, "closed_at": at, **_present(close_reason=data.close_reason)}
    if action is TicketAction.REOPEN:
        return {"reopened_by": actor_id, "reopened_at": at, **_present(reopen_reason=data.reopen_reason)}
    raise InvalidTransition(f"Unsupported action: {action.value}")


def plan_transition(
    *,
    ticket: Any,
    action: str | TicketAction,
    actor_id: int,
    payload: dict[str, Any] | None,
    authority: AuthorityCheck,
    policy: ApprovalPolicy | None = None,
    at: datetime | None = None,
) -> TransitionPlan:
    """Validate an action against the ticket's current state and build its field updates.

    Raises InvalidTransition, Unauthorized or ValidationFailed; never mutates the ticket.
    """
    policy = policy or ApprovalPolicy()
    ts = at or datetime.now(timezone.utc)
    parsed = parse_action(action)
    current = normalize_ticket_status(ticket.status)
    edge = find_edge(parsed, current)
    location = LocationDescriptor.of(ticket)

    _check_guard(
        guard=edge.guard,
        ticket=ticket,
        actor_id=actor_id,
        authority=authority,
        policy=policy,
        location=location,
        action=parsed,
    )
    data = parse_action_payload(parsed, payload)

    if parsed is TicketAction.ESCALATE and not authority.is_authorized_any(
        data.escalated_to, policy.escalate, location
    ):
        raise ValidationFailed(
            "Escalation target has no approval authority at the next level for this location",
            code="ESCALATION_TARGET_NOT_AUTHORIZED",
            details={"escalated_to": data.escalated_to, "required_levels": list(policy.escalate)},
        )

    updates = _stage_updates(action=parsed, actor_id=actor_id, data=data, at=ts)
    updates["status"] = edge.target.value
    return TransitionPlan(
        action=parsed,
        old_status=current,
        new_status=edge.target,
        updates=updates,
        notes=data.notes,
        context=data.model_dump(mode="json", exclude_none=True),
    )
