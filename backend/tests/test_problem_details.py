from __future__ import annotations

import json

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from ticketing.domain_errors import (
    DomainError,
    ExternalSyncFailure,
    InvalidTransition,
    TransientStoreFailure,
)
from ticketing.problem_details import build_problem_details_response, problem_type


def _body(response) -> dict:
    return json.loads(response.body.decode("utf-8"))


def test_problem_type_is_derived_from_code() -> None:
    assert problem_type("TICKET_STALE_STATUS") == "https://api.ticketing.local/problems/ticket-stale-status"


def test_typed_error_renders_rfc7807_fields() -> None:
    response = build_problem_details_response(
        InvalidTransition(
            "Action 'close' is not allowed from 'closed'",
            details={"status": "closed", "action": "close"},
        ),
        instance="/api/v1/tickets/7/actions/close",
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"
    assert _body(response) == {
        "type": "https://api.ticketing.local/problems/ticket-invalid-transition",
        "title": "Conflict",
        "status": 409,
        "detail": "Action 'close' is not allowed from 'closed'",
        "code": "TICKET_INVALID_TRANSITION",
        "instance": "/api/v1/tickets/7/actions/close",
        "details": {"status": "closed", "action": "close"},
    }


def test_instance_and_details_are_optional() -> None:
    body = _body(build_problem_details_response(TransientStoreFailure("Local database unavailable")))

    assert body["status"] == 503
    assert body["code"] == "LOCAL_STORE_UNAVAILABLE"
    assert "instance" not in body
    assert "details" not in body


def test_unregistered_status_falls_back_to_generic_title() -> None:
    body = _body(build_problem_details_response(DomainError(code="ODD", http_status=599, message="odd")))

    assert body["title"] == "Ticketing Error"


def test_exception_handler_maps_sync_failure_to_bad_gateway() -> None:
    app = FastAPI()

    async def _handle_domain_error(request: Request, exc: DomainError):
        return build_problem_details_response(exc, instance=request.url.path)

    app.add_exception_handler(DomainError, _handle_domain_error)

    @app.post("/sync")
    def _sync():
        raise ExternalSyncFailure("insert failed", details={"operation": "create"})

    response = TestClient(app).post("/sync")

    assert response.status_code == 502
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert (payload["code"], payload["instance"]) == ("CEDAR_SYNC_FAILED", "/sync")
    assert payload["details"] == {"operation": "create"}
