"""Approval-authority resolution over the plant/area/line/machine hierarchy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models import ApprovalRule, Person

APPROVAL_LEVELS: tuple[int, ...] = (2, 3, 4)
_LOCATION_FIELDS: tuple[str, ...] = ("plant_code", "area_code", "line_code", "machine_code")


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class LocationDescriptor:
    """Asset location; also used as an approval-rule scope (trailing parts empty)."""

    plant_code: str | None = None
    area_code: str | None = None
    line_code: str | None = None
    machine_code: str | None = None

    def __post_init__(self) -> None:
        for name in _LOCATION_FIELDS:
            object.__setattr__(self, name, _clean(getattr(self, name)))

    @classmethod
    def of(cls, obj: Any) -> "LocationDescriptor":
        """Read the location columns from a ticket, rule or any attribute holder."""
        return cls(**{name: getattr(obj, name, None) for name in _LOCATION_FIELDS})

    @classmethod
    def from_code(cls, code: str, *, separator: str = "-") -> "LocationDescriptor":
        """Split a composite location code; the machine part keeps any remaining separators."""
        parts = [part for part in (code or "").strip().split(separator, 3)]
        parts += [None] * (4 - len(parts))
        return cls(*parts)

    def as_tuple(self) -> tuple[str | None, ...]:
        return tuple(getattr(self, name) for name in _LOCATION_FIELDS)

    def as_dict(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in _LOCATION_FIELDS}

    @property
    def is_contiguous(self) -> bool:
        """True when no level is set below an unset one (e.g. line without area)."""
        seen_gap = False
        for part in self.as_tuple():
            if part is None:
                seen_gap = True
            elif seen_gap:
                return False
        return True


def scope_matches(scope: LocationDescriptor, location: LocationDescriptor) -> bool:
    """A scope matches when every level it names equals the location's level."""
    return all(
        scope_part is None or scope_part == location_part
        for scope_part, location_part in zip(scope.as_tuple(), location.as_tuple())
    )


class ApprovalAuthorityResolver:
    """Read-only approval queries against active ApprovalRule rows."""

    def __init__(self, db: Session):
        self.db = db

    def _candidate_rules(
        self,
        *,
        location: LocationDescriptor,
        levels: Iterable[int],
        person_id: int | None = None,
    ) -> list[ApprovalRule]:
        query = self.db.query(ApprovalRule).join(
            Person, ApprovalRule.person_id == Person.id,
        ).filter(
            ApprovalRule.is_active.is_(True),
            Person.is_active.is_(True),
            ApprovalRule.approval_level.in_(list(levels)),
            or_(
                ApprovalRule.plant_code.is_(None),
                ApprovalRule.plant_code == location.plant_code,
            ),
        )
        if person_id is not None:
            query = query.filter(ApprovalRule.person_id == person_id)
        return [rule for rule in query.all() if scope_matches(LocationDescriptor.of(rule), location)]

    def is_authorized(self, person_id: int, level: int, location: LocationDescriptor) -> bool:
        return self.is_authorized_any(person_id, (level,), location)

    def is_authorized_any(
        self,
        person_id: int,
        levels: Iterable[int],
        location: LocationDescriptor,
    ) -> bool:
        levels = tuple(levels)
        if person_id is None or not levels:
            return False
        return bool(self._candidate_rules(location=location, levels=levels, person_id=person_id))

    def list_authorized_persons(self, level: int, location: LocationDescriptor) -> list[int]:
        rules = self._candidate_rules(location=location, levels=(level,))
        return sorted({rule.person_id for rule in rules})

    def authorized_levels(self, person_id: int, location: LocationDescriptor) -> set[int]:
        rules = self._candidate_rules(location=location, levels=APPROVAL_LEVELS, person_id=person_id)
        return {rule.approval_level for rule in rules}
