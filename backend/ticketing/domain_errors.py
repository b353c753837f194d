"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class _TypedDomainError(DomainError):
    default_code: str = "DOMAIN_ERROR"
    default_status: int = 400

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code=code or self.default_code,
            http_status=self.default_status,
            message=message,
            details=details,
        )


class ValidationFailed(_TypedDomainError):
    """Missing or malformed action payload; no state change."""

    default_code = "VALIDATION_FAILED"
    default_status = 422


class InvalidTransition(_TypedDomainError):
    """Action is not legal from the ticket's current status (including lost updates)."""

    default_code = "TICKET_INVALID_TRANSITION"
    default_status = 409


class Unauthorized(_TypedDomainError):
    """Actor lacks approval authority for the action's level and location."""

    default_code = "APPROVAL_AUTHORITY_REQUIRED"
    default_status = 403


class NotFound(_TypedDomainError):
    default_code = "NOT_FOUND"
    default_status = 404


class ExternalSyncFailure(_TypedDomainError):
    """Cedar create/update failed. Only raised where the sync is the primary operation."""

    default_code = "CEDAR_SYNC_FAILED"
    default_status = 502


class TransientStoreFailure(_TypedDomainError):
    """Local database unavailable; the request is aborted with no partial state."""

    default_code = "LOCAL_STORE_UNAVAILABLE"
    default_status = 503
