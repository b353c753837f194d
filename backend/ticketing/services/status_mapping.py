"""Internal ticket state <-> Cedar work-order status vocabulary.

The table is part of the wire contract with Cedar: changing a code changes how
Cedar interprets a ticket's state, so every change bumps ``version``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Flag, auto
from types import MappingProxyType
from typing import Mapping

from ..domain_errors import DomainError
from .ticket_state_machine import TicketStatus, normalize_ticket_status


class WorkflowFlags(Flag):
    NONE = 0
    WAIT = auto()
    APPROVE = auto()
    NOT_APPROVED = auto()
    HISTORY = auto()
    CANCEL = auto()


# Cedar WO flag columns, written as 'T' / 'F'.
FLAG_COLUMNS: dict[WorkflowFlags, str] = {
    WorkflowFlags.WAIT: "FLAGWAIT",
    WorkflowFlags.APPROVE: "FLAGAPPROVE",
    WorkflowFlags.NOT_APPROVED: "FLAGNOTAPPROVE",
    WorkflowFlags.HISTORY: "FLAGHIS",
    WorkflowFlags.CANCEL: "FLAGCANCEL",
}


@dataclass(frozen=True)
class ExternalStatus:
    wf_status_code: str
    wo_status_no: int
    flags: WorkflowFlags = WorkflowFlags.NONE

    def flag_columns(self) -> dict[str, str]:
        return {column: ("T" if flag in self.flags else "F") for flag, column in FLAG_COLUMNS.items()}


class StatusMappingError(ValueError):
    pass


@dataclass(frozen=True)
class StatusMappingTable:
    """Versioned, validated mapping; build once and inject where needed."""

    version: str
    entries: Mapping[TicketStatus, ExternalStatus]
    default_state: TicketStatus
    initial_state: TicketStatus = TicketStatus.ASSIGNED
    _reverse: Mapping[str, TicketStatus] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            entries = {normalize_ticket_status(state): status for state, status in dict(self.entries).items()}
        except DomainError as exc:
            raise StatusMappingError(f"Status mapping {self.version}: {exc}") from None
        missing = [state.value for state in TicketStatus if state not in entries]
        if missing:
            raise StatusMappingError(f"Status mapping {self.version} is missing states: {', '.join(missing)}")

        reverse: dict[str, TicketStatus] = {}
        for state, status in entries.items():
            clash = reverse.get(status.wf_status_code)
            if clash is not None:
                raise StatusMappingError(
                    f"Status mapping {self.version}: {clash.value} and {state.value} "
                    f"share external code {status.wf_status_code}"
                )
            reverse[status.wf_status_code] = state

        object.__setattr__(self, "entries", MappingProxyType(entries))
        object.__setattr__(self, "default_state", normalize_ticket_status(self.default_state))
        object.__setattr__(self, "initial_state", normalize_ticket_status(self.initial_state))
        object.__setattr__(self, "_reverse", MappingProxyType(reverse))

    def lookup(self, state: str | TicketStatus | None) -> ExternalStatus:
        """External status for a state; unknown states fall back to the default state."""
        try:
            return self.entries[normalize_ticket_status(state)]
        except (KeyError, DomainError):
            return self.entries[self.default_state]

    def resolve_state(self, state: str | TicketStatus | None) -> TicketStatus:
        try:
            return normalize_ticket_status(state)
        except DomainError:
            return self.default_state

    def internal_state_for(self, wf_status_code: str) -> TicketStatus | None:
        return self._reverse.get(wf_status_code)

    @property
    def initial(self) -> ExternalStatus:
        return self.entries[self.initial_state]


_F = WorkflowFlags

DEFAULT_STATUS_MAPPING = StatusMappingTable(
    version="2024.2",
    default_state=TicketStatus.ASSIGNED,
    entries={
        TicketStatus.OPEN: ExternalStatus("05", 0, _F.WAIT),
        TicketStatus.ASSIGNED: ExternalStatus("10", 1, _F.WAIT),
        TicketStatus.ESCALATED: ExternalStatus("40", 3, _F.WAIT),
        TicketStatus.IN_PROGRESS: ExternalStatus("50", 4, _F.APPROVE),
        TicketStatus.REOPENED_IN_PROGRESS: ExternalStatus("55", 4, _F.APPROVE),
        TicketStatus.RESOLVED: ExternalStatus("70", 5, _F.APPROVE),
        TicketStatus.REVIEWED: ExternalStatus("80", 6, _F.APPROVE),
        TicketStatus.COMPLETED: ExternalStatus("85", 7, _F.APPROVE),
        TicketStatus.REJECTED_PENDING_L3_REVIEW: ExternalStatus("90", 8, _F.WAIT | _F.NOT_APPROVED),
        TicketStatus.REJECTED_FINAL: ExternalStatus("95", 8, _F.NOT_APPROVED | _F.CANCEL | _F.HISTORY),
        TicketStatus.CLOSED: ExternalStatus("99", 9, _F.APPROVE | _F.HISTORY),
    },
)


def status_mapping_from_settings(settings) -> StatusMappingTable:
    """Default table, re-labelled with the configured version and default state."""
    return StatusMappingTable(
        version=settings.STATUS_MAPPING_VERSION,
        entries=DEFAULT_STATUS_MAPPING.entries,
        default_state=settings.STATUS_MAPPING_DEFAULT_STATE,
        initial_state=DEFAULT_STATUS_MAPPING.initial_state,
    )
