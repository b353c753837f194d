"""Append-only log of Cedar sync attempts, with per-ticket history and statistics."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import IntegrationLogEntry

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 500


def payload_fingerprint(payload: Any) -> str:
    """Stable sha256 of the canonical JSON form of a payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _json_safe(payload: Any) -> Any:
    if payload is None:
        return None
    return json.loads(json.dumps(payload, default=str))


@dataclass(frozen=True)
class SyncStatistics:
    total: int
    succeeded: int
    failed: int
    by_action: dict[str, dict[str, int]] = field(default_factory=dict)
    recent_errors: list[IntegrationLogEntry] = field(default_factory=list)


class IntegrationLog:
    """Each write uses its own session so a failed sync never shares a transaction with the ticket."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.write_failures = 0

    def record(
        self,
        *,
        ticket_id: int,
        action: str,
        status: str,
        request_data: Any,
        ticket_action: str | None = None,
        external_wo_id: int | None = None,
        response_data: Any = None,
        error_message: str | None = None,
    ) -> bool:
        """Append one entry. Never raises; returns False when the write failed."""
        db: Session | None = None
        try:
            db = self._session_factory()
            db.add(
                IntegrationLogEntry(
                    ticket_id=ticket_id,
                    external_wo_id=external_wo_id,
                    action=action,
                    ticket_action=ticket_action,
                    status=status,
                    request_data=_json_safe(request_data),
                    payload_fingerprint=payload_fingerprint(request_data),
                    response_data=_json_safe(response_data),
                    error_message=error_message[:_MAX_ERROR_LENGTH] if error_message else None,
                    created_at=self._clock(),
                )
            )
            db.commit()
            return True
        except Exception:
            self.write_failures += 1
            logger.exception(
                "Failed to write integration log entry ticket=%s action=%s status=%s",
                ticket_id,
                action,
                status,
            )
            if db is not None:
                try:
                    db.rollback()
                except Exception:
                    logger.exception("Integration log rollback failed")
            return False
        finally:
            if db is not None:
                db.close()

    def for_ticket(self, ticket_id: int, *, limit: int = 100) -> list[IntegrationLogEntry]:
        db = self._session_factory()
        try:
            return (
                db.query(IntegrationLogEntry)
                .filter(IntegrationLogEntry.ticket_id == ticket_id)
                .order_by(IntegrationLogEntry.created_at.desc(), IntegrationLogEntry.id.desc())
                .limit(limit)
                .all()
            )
        finally:
            db.close()

    def latest_entry_at(self) -> datetime | None:
        db = self._session_factory()
        try:
            return db.query(func.max(IntegrationLogEntry.created_at)).scalar()
        finally:
            db.close()

    def statistics(self, *, since: datetime | None = None, recent_error_limit: int = 10) -> SyncStatistics:
        db = self._session_factory()
        try:
            counts = db.query(
                IntegrationLogEntry.action,
                IntegrationLogEntry.status,
                func.count(IntegrationLogEntry.id),
            )
            errors = db.query(IntegrationLogEntry).filter(IntegrationLogEntry.status == "error")
            if since is not None:
                counts = counts.filter(IntegrationLogEntry.created_at >= since)
                errors = errors.filter(IntegrationLogEntry.created_at >= since)

            by_action: dict[str, dict[str, int]] = {}
            for action, status, count in counts.group_by(
                IntegrationLogEntry.action, IntegrationLogEntry.status
            ).all():
                by_action.setdefault(action, {})[status] = int(count)

            succeeded = sum(row.get("success", 0) for row in by_action.values())
            failed = sum(row.get("error", 0) for row in by_action.values())
            recent_errors = (
                errors.order_by(IntegrationLogEntry.created_at.desc(), IntegrationLogEntry.id.desc())
                .limit(recent_error_limit)
                .all()
            )
            return SyncStatistics(
                total=succeeded + failed,
                succeeded=succeeded,
                failed=failed,
                by_action=by_action,
                recent_errors=recent_errors,
            )
        finally:
            db.close()
