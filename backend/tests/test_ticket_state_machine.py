from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from ticketing.domain_errors import InvalidTransition, Unauthorized, ValidationFailed
from ticketing.services.ticket_state_machine import (
    ApprovalPolicy,
    TicketAction,
    TicketStatus,
    allowed_actions,
    legal_edges,
    normalize_ticket_status,
    parse_action,
    plan_transition,
)

AT = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
REPORTER = 101
TECH = 201
SUPERVISOR = 202
ENGINEER = 301
MANAGER = 401


class _AuthorityStub:
    """Grants fixed levels per person regardless of location."""

    def __init__(self, levels_by_person: dict[int, set[int]] | None = None):
        self.levels_by_person = levels_by_person or {}
        self.calls = []

    def is_authorized_any(self, person_id, levels, location):
        self.calls.append((person_id, tuple(levels), location))
        return bool(self.levels_by_person.get(person_id, set()) & set(levels))


def _ticket(status="open", *, assigned_to=None, created_by=REPORTER):
    return SimpleNamespace(
        id=1,
        status=status,
        assigned_to=assigned_to,
        created_by=created_by,
        plant_code="PLT1",
        area_code="ASM",
        line_code="L01",
        machine_code="M07",
    )


def _plan(ticket, action, actor_id, payload=None, authority=None, policy=None):
    return plan_transition(
        ticket=ticket,
        action=action,
        actor_id=actor_id,
        payload=payload,
        authority=authority or _AuthorityStub(),
        policy=policy,
        at=AT,
    )


def test_accept_by_level_two_approver_assigns_ticket() -> None:
    authority = _AuthorityStub({SUPERVISOR: {2}})

    plan = _plan(_ticket("open"), "accept", SUPERVISOR, authority=authority)

    assert plan.old_status is TicketStatus.OPEN
    assert plan.new_status is TicketStatus.ASSIGNED
    assert plan.updates["status"] == "assigned"
    assert plan.updates["accepted_by"] == SUPERVISOR
    assert plan.updates["accepted_at"] == AT
    assert plan.updates["assigned_to"] == SUPERVISOR
    assert authority.calls[0][1] == (2,)


def test_accept_can_assign_someone_else() -> None:
    plan = _plan(
        _ticket("open"),
        "accept",
        SUPERVISOR,
        payload={"assigned_to": TECH},
        authority=_AuthorityStub({SUPERVISOR: {2}}),
    )
    assert plan.updates["assigned_to"] == TECH


def test_accept_without_authority_is_unauthorized() -> None:
    with pytest.raises(Unauthorized) as exc:
        _plan(_ticket("open"), "accept", TECH)

    assert exc.value.code == "APPROVAL_AUTHORITY_REQUIRED"
    assert exc.value.http_status == 403
    assert exc.value.details["required_levels"] == [2]


def test_second_close_is_invalid_transition() -> None:
    with pytest.raises(InvalidTransition) as exc:
        _plan(_ticket("closed"), "close", MANAGER, authority=_AuthorityStub({MANAGER: {4}}))

    assert exc.value.http_status == 409
    assert exc.value.details == {"action": "close", "status": "closed"}


def test_transition_check_happens_before_authority_check() -> None:
    authority = _AuthorityStub()
    with pytest.raises(InvalidTransition):
        _plan(_ticket("closed"), "accept", TECH, authority=authority)
    assert authority.calls == []


def test_start_requires_assignee_and_start_time() -> None:
    ticket = _ticket("assigned", assigned_to=TECH)

    with pytest.raises(Unauthorized) as exc:
        _plan(ticket, "start", SUPERVISOR, payload={"actual_start_at": AT.isoformat()})
    assert exc.value.code == "TICKET_NOT_ASSIGNED"

    with pytest.raises(ValidationFailed) as exc:
        _plan(ticket, "start", TECH, payload={})
    assert exc.value.http_status == 422
    assert exc.value.details["errors"][0]["loc"] == ["actual_start_at"]

    plan = _plan(ticket, "start", TECH, payload={"actual_start_at": "2026-03-02T08:00:00"})
    assert plan.new_status is TicketStatus.IN_PROGRESS
    assert plan.updates["actual_start_at"] == datetime(2026, 3, 2, 8, 0)
    assert plan.context == {"actual_start_at": "2026-03-02T08:00:00"}


def test_escalate_target_needs_escalation_level() -> None:
    ticket = _ticket("in_progress", assigned_to=TECH)
    authority = _AuthorityStub({ENGINEER: {3}, SUPERVISOR: {2}})

    with pytest.raises(ValidationFailed) as exc:
        _plan(ticket, "escalate", TECH, payload={"escalated_to": SUPERVISOR}, authority=authority)
    assert exc.value.code == "ESCALATION_TARGET_NOT_AUTHORIZED"

    plan = _plan(
        ticket,
        "escalate",
        TECH,
        payload={"escalated_to": ENGINEER, "escalation_reason": "needs PLC work"},
        authority=authority,
    )
    assert plan.new_status is TicketStatus.ESCALATED
    assert plan.updates["assigned_to"] == ENGINEER
    assert plan.updates["escalated_to"] == ENGINEER
    assert plan.updates["escalation_reason"] == "needs PLC work"


def test_escalate_by_approver_who_is_not_assignee() -> None:
    authority = _AuthorityStub({SUPERVISOR: {2}, ENGINEER: {3}})
    plan = _plan(
        _ticket("assigned", assigned_to=TECH),
        "escalate",
        SUPERVISOR,
        payload={"escalated_to": ENGINEER},
        authority=authority,
    )
    assert plan.updates["escalated_by"] == SUPERVISOR


def test_resolve_keeps_only_supplied_optional_fields() -> None:
    plan = _plan(
        _ticket("in_progress", assigned_to=TECH),
        "resolve",
        TECH,
        payload={"actual_finish_date": "2026-03-02T11:45:00", "failure_cause": "worn bearing"},
    )

    assert plan.new_status is TicketStatus.RESOLVED
    assert plan.updates["actual_finish_at"] == datetime(2026, 3, 2, 11, 45)
    assert plan.updates["failure_cause"] == "worn bearing"
    assert "actual_duration_minutes" not in plan.updates
    assert "repair_procedure" not in plan.updates
    assert plan.context == {"actual_finish_at": "2026-03-02T11:45:00", "failure_cause": "worn bearing"}


def test_reject_requires_reason() -> None:
    authority = _AuthorityStub({SUPERVISOR: {2}})
    with pytest.raises(ValidationFailed):
        _plan(_ticket("open"), "reject", SUPERVISOR, payload={"rejection_reason": ""}, authority=authority)


def test_two_stage_rejection_and_l3_override() -> None:
    authority = _AuthorityStub({SUPERVISOR: {2}, ENGINEER: {3}})

    first = _plan(
        _ticket("resolved"), "reject", SUPERVISOR, payload={"rejection_reason": "not fixed"}, authority=authority
    )
    assert first.new_status is TicketStatus.REJECTED_PENDING_L3_REVIEW

    pending = _ticket("rejected_pending_l3_review")
    with pytest.raises(Unauthorized):
        _plan(pending, "reject", SUPERVISOR, payload={"rejection_reason": "confirm"}, authority=authority)

    final = _plan(pending, "reject", ENGINEER, payload={"rejection_reason": "confirm"}, authority=authority)
    assert final.new_status is TicketStatus.REJECTED_FINAL

    override = _plan(pending, "accept", ENGINEER, authority=authority)
    assert override.new_status is TicketStatus.ASSIGNED


def test_review_only_by_reporter() -> None:
    with pytest.raises(Unauthorized) as exc:
        _plan(_ticket("resolved"), "review", TECH)
    assert exc.value.code == "TICKET_REPORTER_REQUIRED"

    plan = _plan(_ticket("resolved"), "review", REPORTER, payload={"satisfaction_rating": 5})
    assert plan.new_status is TicketStatus.REVIEWED
    assert plan.updates["satisfaction_rating"] == 5


def test_complete_and_close_levels() -> None:
    authority = _AuthorityStub({ENGINEER: {3}, MANAGER: {4}})

    completed = _plan(_ticket("reviewed"), "complete", ENGINEER, authority=authority)
    assert completed.new_status is TicketStatus.COMPLETED

    with pytest.raises(Unauthorized):
        _plan(_ticket("completed"), "close", ENGINEER, authority=authority)

    closed = _plan(
        _ticket("completed"), "close", MANAGER, payload={"close_reason": "done"}, authority=authority
    )
    assert closed.new_status is TicketStatus.CLOSED
    assert closed.updates["close_reason"] == "done"


def test_reopen_by_reporter_or_approver() -> None:
    authority = _AuthorityStub({SUPERVISOR: {2}})

    assert _plan(_ticket("closed"), "reopen", REPORTER).new_status is TicketStatus.REOPENED_IN_PROGRESS
    assert _plan(_ticket("rejected_final"), "reopen", SUPERVISOR, authority=authority).new_status is (
        TicketStatus.REOPENED_IN_PROGRESS
    )
    with pytest.raises(Unauthorized):
        _plan(_ticket("closed"), "reopen", TECH)


def test_guard_levels_come_from_policy() -> None:
    policy = ApprovalPolicy(accept=(3,))
    authority = _AuthorityStub({SUPERVISOR: {2}, ENGINEER: {3}})

    with pytest.raises(Unauthorized):
        _plan(_ticket("open"), "accept", SUPERVISOR, authority=authority, policy=policy)
    assert _plan(_ticket("open"), "accept", ENGINEER, authority=authority, policy=policy).new_status is (
        TicketStatus.ASSIGNED
    )


def test_every_non_edge_is_rejected() -> None:
    edges = legal_edges()
    authority = _AuthorityStub({person: {2, 3, 4} for person in (TECH, REPORTER)})
    for status in TicketStatus:
        for action in TicketAction:
            if action is TicketAction.CREATE or action in allowed_actions(status):
                continue
            with pytest.raises(InvalidTransition):
                _plan(_ticket(status.value, assigned_to=TECH), action, TECH, authority=authority)
    assert (TicketStatus.OPEN, TicketStatus.CLOSED) not in edges
    assert (TicketStatus.CLOSED, TicketStatus.REOPENED_IN_PROGRESS) in edges


def test_unknown_actions_and_statuses() -> None:
    with pytest.raises(InvalidTransition) as exc:
        parse_action("teleport")
    assert exc.value.code == "TICKET_UNKNOWN_ACTION"

    with pytest.raises(InvalidTransition):
        parse_action("create")

    with pytest.raises(InvalidTransition) as exc:
        normalize_ticket_status("on_hold")
    assert exc.value.code == "TICKET_UNKNOWN_STATUS"

    assert normalize_ticket_status("finished") is TicketStatus.RESOLVED
    assert normalize_ticket_status("ACCEPTED") is TicketStatus.ASSIGNED
