from __future__ import annotations

import pytest

from ticketing.services.status_mapping import (
    DEFAULT_STATUS_MAPPING,
    ExternalStatus,
    StatusMappingError,
    StatusMappingTable,
    WorkflowFlags,
)
from ticketing.services.ticket_state_machine import TicketStatus


def test_default_mapping_covers_every_ticket_status() -> None:
    for state in TicketStatus:
        assert isinstance(DEFAULT_STATUS_MAPPING.lookup(state), ExternalStatus)


def test_reverse_mapping_is_injective() -> None:
    codes = [status.wf_status_code for status in DEFAULT_STATUS_MAPPING.entries.values()]
    assert len(codes) == len(set(codes))
    for state, status in DEFAULT_STATUS_MAPPING.entries.items():
        assert DEFAULT_STATUS_MAPPING.internal_state_for(status.wf_status_code) is state


def test_unknown_state_falls_back_to_default_state() -> None:
    fallback = DEFAULT_STATUS_MAPPING.lookup("waiting_for_parts")
    assert fallback == DEFAULT_STATUS_MAPPING.lookup(TicketStatus.ASSIGNED)
    assert DEFAULT_STATUS_MAPPING.resolve_state("waiting_for_parts") is TicketStatus.ASSIGNED


def test_legacy_finished_status_maps_like_resolved() -> None:
    assert DEFAULT_STATUS_MAPPING.lookup("finished") == DEFAULT_STATUS_MAPPING.lookup(TicketStatus.RESOLVED)


def test_initial_status_is_workflow_entry_code() -> None:
    initial = DEFAULT_STATUS_MAPPING.initial
    assert initial.wf_status_code == "10"
    assert initial.wo_status_no == 1


def test_flag_columns_render_t_and_f() -> None:
    columns = DEFAULT_STATUS_MAPPING.lookup(TicketStatus.REJECTED_FINAL).flag_columns()
    assert columns == {
        "FLAGWAIT": "F",
        "FLAGAPPROVE": "F",
        "FLAGNOTAPPROVE": "T",
        "FLAGHIS": "T",
        "FLAGCANCEL": "T",
    }


def test_mapping_rejects_missing_states() -> None:
    entries = dict(DEFAULT_STATUS_MAPPING.entries)
    entries.pop(TicketStatus.REVIEWED)

    with pytest.raises(StatusMappingError, match="missing states: reviewed"):
        StatusMappingTable(version="test", entries=entries, default_state=TicketStatus.ASSIGNED)


def test_mapping_rejects_shared_external_codes() -> None:
    entries = dict(DEFAULT_STATUS_MAPPING.entries)
    entries[TicketStatus.COMPLETED] = ExternalStatus("80", 7, WorkflowFlags.APPROVE)

    with pytest.raises(StatusMappingError, match="share external code 80"):
        StatusMappingTable(version="test", entries=entries, default_state=TicketStatus.ASSIGNED)


def test_mapping_rejects_unknown_state_keys() -> None:
    entries = dict(DEFAULT_STATUS_MAPPING.entries)
    entries["on_hold"] = ExternalStatus("60", 4, WorkflowFlags.WAIT)

    with pytest.raises(StatusMappingError, match="Unknown ticket status: on_hold"):
        StatusMappingTable(version="test", entries=entries, default_state=TicketStatus.ASSIGNED)


def test_substitute_table_changes_lookup_without_global_state() -> None:
    entries = {
        state: ExternalStatus(f"X{index}", index, WorkflowFlags.NONE)
        for index, state in enumerate(TicketStatus)
    }
    table = StatusMappingTable(version="alt", entries=entries, default_state="open")

    assert table.lookup(TicketStatus.OPEN).wf_status_code == "X0"
    assert table.lookup("nonsense").wf_status_code == "X0"
    assert DEFAULT_STATUS_MAPPING.lookup(TicketStatus.OPEN).wf_status_code == "05"
