"""Pydantic schemas for API and ticket action payloads."""
from pydantic import AliasChoices, BaseModel, Field, ConfigDict, model_validator
from typing import Any, Optional
from datetime import datetime
from decimal import Decimal


# Person / approval schemas
class ApprovalRuleCreate(BaseModel):
    person_id: int
    approval_level: int = Field(ge=2, le=4)
    plant_code: Optional[str] = None
    area_code: Optional[str] = None
    line_code: Optional[str] = None
    machine_code: Optional[str] = None


class ApprovalRuleResponse(BaseModel):
    id: int
    person_id: int
    approval_level: int
    plant_code: Optional[str] = None
    area_code: Optional[str] = None
    line_code: Optional[str] = None
    machine_code: Optional[str] = None
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class AuthorizationCheckResponse(BaseModel):
    person_id: int
    approval_level: int
    authorized: bool


class AuthorizedPersonsResponse(BaseModel):
    approval_level: int
    person_ids: list[int]


# Ticket schemas
class TicketCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    severity_level: str = "medium"
    priority: str = Field("normal", pattern="^(low|normal|high|urgent)$")
    location_code: Optional[str] = None
    plant_code: Optional[str] = None
    area_code: Optional[str] = None
    line_code: Optional[str] = None
    machine_code: Optional[str] = None
    equipment_no: Optional[int] = None

    @model_validator(mode="after")
    def _require_location(self):
        if not self.location_code and not self.plant_code:
            raise ValueError("Either location_code or plant_code is required")
        return self


class TicketResponse(BaseModel):
    id: int
    ticket_number: str
    title: str
    description: Optional[str] = None
    status: str
    severity_level: str
    priority: str
    plant_code: str
    area_code: Optional[str] = None
    line_code: Optional[str] = None
    machine_code: Optional[str] = None
    created_by: int
    created_at: Optional[datetime] = None
    assigned_to: Optional[int] = None
    accepted_by: Optional[int] = None
    accepted_at: Optional[datetime] = None
    escalated_by: Optional[int] = None
    escalated_at: Optional[datetime] = None
    escalated_to: Optional[int] = None
    actual_start_at: Optional[datetime] = None
    finished_by: Optional[int] = None
    finished_at: Optional[datetime] = None
    actual_finish_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    completed_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    closed_by: Optional[int] = None
    closed_at: Optional[datetime] = None
    reopened_by: Optional[int] = None
    reopened_at: Optional[datetime] = None
    cost_avoidance: Optional[Decimal] = None
    downtime_avoidance_hours: Optional[Decimal] = None
    external_wo_id: Optional[int] = None
    external_wo_code: Optional[str] = None
    external_sync_status: Optional[str] = None
    external_sync_error: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class TicketStatusHistoryResponse(BaseModel):
    old_status: Optional[str] = None
    new_status: str
    action: str
    changed_by: int
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class SyncWarningResponse(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class TicketActionResponse(BaseModel):
    ticket: TicketResponse
    warnings: list[SyncWarningResponse] = []


# Ticket action payloads (validated by the state machine)
class _ActionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    notes: Optional[str] = None


class AcceptPayload(_ActionPayload):
    assigned_to: Optional[int] = None


class StartPayload(_ActionPayload):
    actual_start_at: datetime


class EscalatePayload(_ActionPayload):
    escalated_to: int
    escalation_reason: Optional[str] = None


class ResolvePayload(_ActionPayload):
    actual_finish_at: datetime = Field(validation_alias=AliasChoices("actual_finish_at", "actual_finish_date"))
    actual_start_at: Optional[datetime] = None
    actual_duration_minutes: Optional[int] = Field(
        None, ge=0, validation_alias=AliasChoices("actual_duration_minutes", "actual_duration")
    )
    failure_cause: Optional[str] = None
    repair_procedure: Optional[str] = None
    completion_notes: Optional[str] = None
    cost_avoidance: Optional[Decimal] = Field(None, ge=0)
    downtime_avoidance_hours: Optional[Decimal] = Field(None, ge=0)


class RejectPayload(_ActionPayload):
    rejection_reason: str = Field(min_length=1)


class ReviewPayload(_ActionPayload):
    review_comment: Optional[str] = None
    satisfaction_rating: Optional[int] = Field(None, ge=1, le=5)


class CompletePayload(_ActionPayload):
    pass


class ClosePayload(_ActionPayload):
    close_reason: Optional[str] = None


class ReopenPayload(_ActionPayload):
    reopen_reason: Optional[str] = None


# Cedar integration schemas
class SyncRequest(BaseModel):
    action: str = "resync"
    payload: dict[str, Any] = {}


class RetryFailedRequest(BaseModel):
    ticket_ids: Optional[list[int]] = None


class SyncResultResponse(BaseModel):
    ok: bool
    ticket_id: int
    external_id: Optional[int] = None
    external_code: Optional[str] = None
    external_status: Optional[str] = None
    operation: str
    warnings: list[SyncWarningResponse] = []


class ExternalWorkOrderResponse(BaseModel):
    external_id: int
    external_code: Optional[str] = None
    wo_status_no: Optional[int] = None
    wf_status_code: Optional[str] = None
    internal_state: Optional[str] = None
    fields: dict[str, Any] = {}


class IntegrationLogEntryResponse(BaseModel):
    id: int
    ticket_id: int
    external_wo_id: Optional[int] = None
    action: str
    ticket_action: Optional[str] = None
    status: str
    payload_fingerprint: str
    request_data: Optional[Any] = None
    response_data: Optional[Any] = None
    error_message: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class SyncStatisticsResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    by_action: dict[str, dict[str, int]] = {}
    recent_errors: list[IntegrationLogEntryResponse] = []
