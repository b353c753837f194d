"""RFC 7807 Problem Details rendering for domain errors."""
from __future__ import annotations

from http import HTTPStatus

from fastapi.responses import JSONResponse

from .domain_errors import DomainError

PROBLEM_TYPE_BASE = "https://api.ticketing.local/problems/"


def problem_type(code: str) -> str:
    return f"{PROBLEM_TYPE_BASE}{code.lower().replace('_', '-')}"


def build_problem_details_response(exc: DomainError, *, instance: str | None = None) -> JSONResponse:
    """Render a DomainError; `code` stays machine-readable, `instance` names the request path."""
    try:
        title = HTTPStatus(exc.http_status).phrase
    except ValueError:
        title = "Ticketing Error"

    payload: dict[str, object] = {
        "type": problem_type(exc.code),
        "title": title,
        "status": exc.http_status,
        "detail": exc.message,
        "code": exc.code,
    }
    if instance:
        payload["instance"] = instance
    if exc.details is not None:
        payload["details"] = exc.details

    return JSONResponse(
        status_code=exc.http_status,
        content=payload,
        media_type="application/problem+json",
    )
