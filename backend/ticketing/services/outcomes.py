"""Result-with-warnings values for operations whose secondary effects may fail."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class OperationWarning:
    """Non-fatal problem reported next to an otherwise successful result."""

    code: str
    message: str
    details: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ActionResult:
    ticket: Any
    warnings: list[OperationWarning] = field(default_factory=list)


@dataclass
class SyncResult:
    ticket_id: int
    operation: str
    ok: bool
    external_id: int | None = None
    external_code: str | None = None
    external_status: str | None = None
    warnings: list[OperationWarning] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["warnings"] = [warning.as_dict() for warning in self.warnings]
        return payload
