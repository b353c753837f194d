from __future__ import annotations

from datetime import datetime

from ticketing.models import IntegrationLogEntry
from ticketing.services.integration_log import IntegrationLog, payload_fingerprint


class _Clock:
    def __init__(self, *moments):
        self._moments = list(moments)

    def __call__(self):
        return self._moments.pop(0)


def test_fingerprint_ignores_key_order() -> None:
    assert payload_fingerprint({"a": 1, "b": [1, 2]}) == payload_fingerprint({"b": [1, 2], "a": 1})
    assert payload_fingerprint({"a": 1}) != payload_fingerprint({"a": 2})
    assert len(payload_fingerprint(None)) == 64


def test_record_and_read_back_newest_first(session_factory) -> None:
    log = IntegrationLog(
        session_factory,
        clock=_Clock(datetime(2026, 3, 2, 8, 0), datetime(2026, 3, 2, 9, 0), datetime(2026, 3, 2, 10, 0)),
    )

    assert log.record(ticket_id=1, action="create", status="success", request_data={"WOProblem": "leak"},
                      external_wo_id=5001, response_data={"wono": 5001})
    assert log.record(ticket_id=1, action="status_update", status="error", request_data={"WF_STEP": "start"},
                      external_wo_id=5001, error_message="timeout")
    assert log.record(ticket_id=2, action="create", status="success", request_data={})

    entries = log.for_ticket(1)
    assert [(entry.action, entry.status) for entry in entries] == [("status_update", "error"), ("create", "success")]
    assert entries[1].request_data == {"WOProblem": "leak"}
    assert entries[1].response_data == {"wono": 5001}
    assert entries[1].payload_fingerprint == payload_fingerprint({"WOProblem": "leak"})
    assert log.write_failures == 0


def test_error_message_is_truncated(session_factory) -> None:
    log = IntegrationLog(session_factory)
    log.record(ticket_id=1, action="create", status="error", request_data={}, error_message="x" * 2000)

    assert len(log.for_ticket(1)[0].error_message) == 500


def test_non_json_request_data_is_stored_as_text(session_factory) -> None:
    log = IntegrationLog(session_factory)
    log.record(
        ticket_id=1,
        action="status_update",
        status="success",
        request_data={"ACT_START": datetime(2026, 3, 2, 8, 0)},
    )

    assert log.for_ticket(1)[0].request_data == {"ACT_START": "2026-03-02 08:00:00"}


def test_write_failure_is_swallowed_and_counted(session_factory) -> None:
    log = IntegrationLog(session_factory)

    # Violates the action check constraint.
    assert log.record(ticket_id=1, action="teleport", status="success", request_data={}) is False
    assert log.record(ticket_id=1, action="create", status="success", request_data={}) is True

    assert log.write_failures == 1
    assert len(log.for_ticket(1)) == 1


def test_statistics_group_by_action_and_status(session_factory) -> None:
    log = IntegrationLog(session_factory)
    for action, status in (
        ("create", "success"),
        ("create", "error"),
        ("status_update", "success"),
        ("status_update", "success"),
        ("status_update", "error"),
    ):
        log.record(ticket_id=1, action=action, status=status, request_data={}, error_message=status)

    stats = log.statistics()

    assert (stats.total, stats.succeeded, stats.failed) == (5, 3, 2)
    assert stats.by_action == {
        "create": {"success": 1, "error": 1},
        "status_update": {"success": 2, "error": 1},
    }
    assert len(stats.recent_errors) == 2
    assert all(isinstance(entry, IntegrationLogEntry) for entry in stats.recent_errors)


def test_statistics_since_filters_old_entries(session_factory) -> None:
    log = IntegrationLog(
        session_factory,
        clock=_Clock(datetime(2026, 3, 1, 8, 0), datetime(2026, 3, 2, 8, 0)),
    )
    log.record(ticket_id=1, action="create", status="error", request_data={})
    log.record(ticket_id=1, action="status_update", status="success", request_data={})

    stats = log.statistics(since=datetime(2026, 3, 2, 0, 0))

    assert (stats.total, stats.succeeded, stats.failed) == (1, 1, 0)
    assert stats.recent_errors == []
    assert log.latest_entry_at() == datetime(2026, 3, 2, 8, 0)
