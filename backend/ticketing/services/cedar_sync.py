"""Push ticket lifecycle state into Cedar work orders (create once, then update)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..cedar_gateway import (
    CedarGateway,
    CedarGatewayError,
    WorkOrderHeader,
    cedar_date,
    cedar_time,
    cedar_wall_clock,
)
from ..domain_errors import NotFound
from ..models import Person, Ticket
from .approval_authority import LocationDescriptor
from .integration_log import IntegrationLog
from .outcomes import OperationWarning, SyncResult
from .status_mapping import DEFAULT_STATUS_MAPPING, ExternalStatus, StatusMappingTable, WorkflowFlags
from .ticket_state_machine import TicketAction, TicketStatus

logger = logging.getLogger(__name__)

# Tickets that never reached acceptance have no work order yet.
PRE_WORK_ORDER_STATES: frozenset[TicketStatus] = frozenset({
    TicketStatus.OPEN,
    TicketStatus.REJECTED_PENDING_L3_REVIEW,
    TicketStatus.REJECTED_FINAL,
})

_PRIORITY_NUMBERS: dict[str, int] = {"urgent": 1, "high": 2, "normal": 3, "low": 4}


def map_priority_to_cedar(priority: str | None, default: int = 3) -> int:
    return _PRIORITY_NUMBERS.get((priority or "").lower(), default)


@dataclass(frozen=True)
class CedarSyncOptions:
    site_no: int = 3
    wo_type_no: int = 16
    default_duration_minutes: int = 120
    system_user: int = 1
    default_priority_no: int = 3

    @classmethod
    def from_settings(cls, settings: Any) -> "CedarSyncOptions":
        return cls(
            site_no=settings.CEDAR_SITE_NO,
            wo_type_no=settings.CEDAR_WO_TYPE_NO,
            default_duration_minutes=settings.CEDAR_DEFAULT_SCH_DURATION_MINUTES,
            system_user=settings.CEDAR_SYSTEM_USER,
            default_priority_no=settings.CEDAR_DEFAULT_PRIORITY_NO,
        )


class WorkOrderSyncPayload(BaseModel):
    """Optional work-order fields a ticket action may carry."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    actual_start_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("actual_start_at", "actual_start_date")
    )
    actual_finish_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("actual_finish_at", "actual_finish_date")
    )
    actual_duration_minutes: Optional[int] = Field(
        None, validation_alias=AliasChoices("actual_duration_minutes", "actual_duration")
    )
    failure_cause: Optional[str] = Field(None, validation_alias=AliasChoices("failure_cause", "cause"))
    repair_procedure: Optional[str] = Field(
        None, validation_alias=AliasChoices("repair_procedure", "procedure")
    )
    close_reason: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class WorkOrderUpdate:
    """Typed field set for one WO update; only non-empty fields reach the statement."""

    updated_by: int
    updated_at: datetime
    workflow_step: str
    status: ExternalStatus | None = None
    actual_start_at: datetime | None = None
    actual_finish_at: datetime | None = None
    actual_duration_minutes: int | None = None
    cause: str | None = None
    procedure: str | None = None
    work_by: int | None = None
    completed_by: int | None = None
    accepted_by: int | None = None
    accept_note: str | None = None
    history_at: datetime | None = None

    def to_columns(self) -> dict[str, Any]:
        columns: dict[str, Any] = {
            "UPDATEUSER": self.updated_by,
            "UPDATEDATE": cedar_date(self.updated_at),
            "UpdateTime": cedar_time(self.updated_at),
            "WF_STEP": self.workflow_step,
        }
        if self.status is not None:
            columns["WOStatusNo"] = self.status.wo_status_no
            columns["WFStatusCode"] = self.status.wf_status_code
            columns.update(self.status.flag_columns())
        if self.actual_start_at is not None:
            columns["ACT_START_D"] = cedar_date(self.actual_start_at)
            columns["ACT_START_T"] = cedar_time(self.actual_start_at)
        if self.actual_finish_at is not None:
            columns["ACT_FINISH_D"] = cedar_date(self.actual_finish_at)
            columns["ACT_FINISH_T"] = cedar_time(self.actual_finish_at)
        if self.actual_duration_minutes is not None:
            columns["ACT_DURATION"] = self.actual_duration_minutes
        if self.cause is not None:
            columns["WO_CAUSE"] = self.cause
        if self.procedure is not None:
            columns["TaskProcedure"] = self.procedure
        if self.work_by is not None:
            columns["WORKBY"] = self.work_by
        if self.completed_by is not None:
            columns["COMPLETEUSER"] = self.completed_by
            columns["COMPLETEDATE"] = cedar_date(self.updated_at)
            columns["COMPLETE_TIME"] = cedar_time(self.updated_at)
        if self.accepted_by is not None:
            columns["ACCEPTUSER"] = self.accepted_by
            columns["ACCEPTDATE"] = cedar_date(self.updated_at)
            columns["ACCEPT_TIME"] = cedar_time(self.updated_at)
        if self.accept_note is not None:
            columns["ACCEPT_NOTE"] = self.accept_note
        if self.history_at is not None:
            columns["HIS_DATE"] = cedar_date(self.history_at)
            columns["HIS_TIME"] = cedar_time(self.history_at)
        return columns


def build_work_order_update(
    *,
    ticket: Any,
    action: str,
    payload: WorkOrderSyncPayload,
    mapping: StatusMappingTable,
    actor_id: int,
    at: datetime,
    include_status: bool = True,
) -> WorkOrderUpdate:
    """Field set for the ticket's current state; optional fields only when supplied."""
    status = mapping.lookup(ticket.status) if include_status else None
    state = mapping.resolve_state(ticket.status)
    closing = action == TicketAction.CLOSE.value or state is TicketStatus.CLOSED

    return WorkOrderUpdate(
        updated_by=actor_id,
        updated_at=at,
        workflow_step=action,
        status=status,
        actual_start_at=payload.actual_start_at,
        actual_finish_at=payload.actual_finish_at,
        actual_duration_minutes=payload.actual_duration_minutes,
        cause=payload.failure_cause,
        procedure=payload.repair_procedure,
        work_by=ticket.assigned_to if action == TicketAction.START.value else None,
        completed_by=actor_id if action == TicketAction.COMPLETE.value else None,
        accepted_by=actor_id if closing else None,
        accept_note=(payload.close_reason or payload.notes) if closing else None,
        history_at=at if status is not None and WorkflowFlags.HISTORY in status.flags else None,
    )


@dataclass(frozen=True)
class ExternalWorkOrder:
    external_id: int
    external_code: str | None
    wo_status_no: int | None
    wf_status_code: str | None
    internal_state: TicketStatus | None
    fields: dict[str, Any] = field(default_factory=dict)


class CedarSyncEngine:
    """Creates the Cedar WO on first sync and keeps its status in line with the ticket.

    Failures are logged and returned as warnings; the ticket's own status is never touched.
    """

    def __init__(
        self,
        *,
        cedar_engine: Engine,
        integration_log: IntegrationLog,
        mapping: StatusMappingTable = DEFAULT_STATUS_MAPPING,
        gateway: CedarGateway | None = None,
        options: CedarSyncOptions | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.cedar_engine = cedar_engine
        self.integration_log = integration_log
        self.mapping = mapping
        self.gateway = gateway or CedarGateway()
        self.options = options or CedarSyncOptions()
        self._clock = clock or cedar_wall_clock

    def sync_ticket(
        self,
        db: Session,
        ticket: Ticket,
        action: str,
        payload: dict[str, Any] | None = None,
        *,
        actor_id: int | None = None,
    ) -> SyncResult:
        actor = actor_id or self.options.system_user
        state = self.mapping.resolve_state(ticket.status)

        if ticket.external_wo_id is None:
            if state in PRE_WORK_ORDER_STATES:
                return SyncResult(ticket_id=ticket.id, operation="skipped", ok=True)
            created = self._create(db, ticket, action=action, actor_id=actor)
            if not created.ok or self.mapping.lookup(state) == self.mapping.initial:
                return created
            updated = self._update(db, ticket, action=action, payload=payload, actor_id=actor)
            return SyncResult(
                ticket_id=ticket.id,
                operation="create+update",
                ok=updated.ok,
                external_id=created.external_id,
                external_code=created.external_code,
                external_status=updated.external_status if updated.ok else created.external_status,
                warnings=created.warnings + updated.warnings,
            )

        return self._update(db, ticket, action=action, payload=payload, actor_id=actor)

    def get_external_status(self, external_id: int) -> ExternalWorkOrder:
        with self.cedar_engine.connect() as conn:
            row = self.gateway.fetch_work_order(conn, external_id)
        if row is None:
            raise NotFound("Work order not found in Cedar", code="CEDAR_WO_NOT_FOUND")
        code = row.get("WFStatusCode")
        return ExternalWorkOrder(
            external_id=row["WONO"],
            external_code=row.get("WOCODE"),
            wo_status_no=row.get("WOStatusNo"),
            wf_status_code=code,
            internal_state=self.mapping.internal_state_for(code) if code else None,
            fields=row,
        )

    def ping(self) -> None:
        with self.cedar_engine.connect() as conn:
            self.gateway.ping(conn)

    # Create path

    def _build_header(self, db: Session, ticket: Ticket, actor_id: int) -> WorkOrderHeader:
        reporter = db.get(Person, ticket.created_by)
        acceptor = db.get(Person, ticket.accepted_by) if ticket.accepted_by else None
        location = LocationDescriptor.of(ticket)
        return WorkOrderHeader(
            created_at=self._clock(),
            problem=ticket.title,
            location_code="-".join(part for part in location.as_tuple() if part),
            priority_no=map_priority_to_cedar(ticket.priority, self.options.default_priority_no),
            dept_no=acceptor.department_no if acceptor else None,
            req_dept_no=reporter.department_no if reporter else None,
            update_user=ticket.accepted_by or actor_id,
            assigned_to=ticket.assigned_to or ticket.accepted_by,
            receive_person_no=ticket.created_by,
            requester_name=reporter.display_name if reporter else "",
            eq_no=ticket.equipment_no or 0,
            wo_type_no=self.options.wo_type_no,
            site_no=self.options.site_no,
            sch_duration_minutes=self.options.default_duration_minutes,
        )

    def _create(self, db: Session, ticket: Ticket, *, action: str, actor_id: int) -> SyncResult:
        header = self._build_header(db, ticket, actor_id)
        request_data = header.procedure_parameters()
        initial = self.mapping.initial
        workflow_columns = WorkOrderUpdate(
            updated_by=actor_id,
            updated_at=header.created_at,
            workflow_step=action,
            status=initial,
        ).to_columns()

        try:
            with self.cedar_engine.begin() as conn:
                self.gateway.insert_work_order(conn, header)
                external_id = self.gateway.last_work_order_id(conn)
                if not external_id:
                    raise CedarGatewayError("Failed to create Work Order - no WO number returned")
                self.gateway.initiate_workflow(conn, external_id, workflow_columns)
                external_code = self.gateway.work_order_code(conn, external_id) or f"WO{external_id}"
        except (SQLAlchemyError, CedarGatewayError) as exc:
            logger.warning("cedar.create failed ticket=%s error=%s", ticket.id, exc)
            return self._failed(
                db,
                ticket,
                operation="create",
                log_action="create",
                ticket_action=action,
                request_data=request_data,
                code="CEDAR_CREATE_FAILED",
                error=str(exc),
            )

        linked = self._store_external_reference(db, ticket, external_id, external_code)
        if not linked:
            message = (
                f"Work Order {external_code} was created but the ticket already references "
                "another work order or could not be updated"
            )
            logger.error("cedar.create orphan ticket=%s wono=%s", ticket.id, external_id)
            self.integration_log.record(
                ticket_id=ticket.id,
                action="create",
                ticket_action=action,
                status="error",
                external_wo_id=external_id,
                request_data=request_data,
                response_data={"wono": external_id, "wocode": external_code},
                error_message=message,
            )
            return SyncResult(
                ticket_id=ticket.id,
                operation="create",
                ok=False,
                external_id=ticket.external_wo_id,
                external_code=ticket.external_wo_code,
                warnings=[
                    OperationWarning(
                        code="CEDAR_WO_NOT_LINKED",
                        message=message,
                        details={"orphan_external_id": external_id},
                    )
                ],
            )

        self.integration_log.record(
            ticket_id=ticket.id,
            action="create",
            ticket_action=action,
            status="success",
            external_wo_id=external_id,
            request_data=request_data,
            response_data={"wono": external_id, "wocode": external_code},
        )
        logger.info("cedar.create ticket=%s wono=%s wocode=%s", ticket.id, external_id, external_code)
        return SyncResult(
            ticket_id=ticket.id,
            operation="create",
            ok=True,
            external_id=external_id,
            external_code=external_code,
            external_status=initial.wf_status_code,
        )

    def _store_external_reference(
        self,
        db: Session,
        ticket: Ticket,
        external_id: int,
        external_code: str,
    ) -> bool:
        try:
            rows = db.query(Ticket).filter(
                Ticket.id == ticket.id,
                Ticket.external_wo_id.is_(None),
            ).update(
                {
                    "external_wo_id": external_id,
                    "external_wo_code": external_code,
                    "external_sync_status": "success",
                    "external_last_sync_at": datetime.now(timezone.utc),
                    "external_sync_error": None,
                },
                synchronize_session=False,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to store Cedar reference on ticket %s", ticket.id)
            return False
        db.refresh(ticket)
        return rows == 1

    # Update path

    def _update(
        self,
        db: Session,
        ticket: Ticket,
        *,
        action: str,
        payload: dict[str, Any] | None,
        actor_id: int,
    ) -> SyncResult:
        external_id = ticket.external_wo_id
        try:
            sync_payload = WorkOrderSyncPayload.model_validate(payload or {})
        except ValidationError as exc:
            return self._failed(
                db,
                ticket,
                operation="update",
                log_action="status_update",
                ticket_action=action,
                request_data={"payload": payload},
                code="CEDAR_PAYLOAD_INVALID",
                error=str(exc),
                external_id=external_id,
            )

        wo_update = build_work_order_update(
            ticket=ticket,
            action=action,
            payload=sync_payload,
            mapping=self.mapping,
            actor_id=actor_id,
            at=self._clock(),
        )
        columns = wo_update.to_columns()

        try:
            with self.cedar_engine.begin() as conn:
                rows = self.gateway.update_work_order(conn, external_id, columns)
                if rows == 0:
                    raise CedarGatewayError(f"Work Order {external_id} not found in Cedar")
        except (SQLAlchemyError, CedarGatewayError) as exc:
            logger.warning("cedar.update failed ticket=%s wono=%s error=%s", ticket.id, external_id, exc)
            return self._failed(
                db,
                ticket,
                operation="update",
                log_action="status_update",
                ticket_action=action,
                request_data=columns,
                code="CEDAR_UPDATE_FAILED",
                error=str(exc),
                external_id=external_id,
            )

        self._mark_ticket(db, ticket, sync_status="success", error=None)
        self.integration_log.record(
            ticket_id=ticket.id,
            action="status_update",
            ticket_action=action,
            status="success",
            external_wo_id=external_id,
            request_data=columns,
            response_data={"updated": True},
        )
        logger.info(
            "cedar.update ticket=%s wono=%s status=%s",
            ticket.id,
            external_id,
            columns.get("WFStatusCode"),
        )
        return SyncResult(
            ticket_id=ticket.id,
            operation="update",
            ok=True,
            external_id=external_id,
            external_code=ticket.external_wo_code,
            external_status=columns.get("WFStatusCode"),
        )

    # Bookkeeping

    def _failed(
        self,
        db: Session,
        ticket: Ticket,
        *,
        operation: str,
        log_action: str,
        ticket_action: str,
        request_data: Any,
        code: str,
        error: str,
        external_id: int | None = None,
    ) -> SyncResult:
        self._mark_ticket(db, ticket, sync_status="error", error=error)
        self.integration_log.record(
            ticket_id=ticket.id,
            action=log_action,
            ticket_action=ticket_action,
            status="error",
            external_wo_id=external_id,
            request_data=request_data,
            error_message=error,
        )
        return SyncResult(
            ticket_id=ticket.id,
            operation=operation,
            ok=False,
            external_id=external_id,
            external_code=ticket.external_wo_code if external_id else None,
            warnings=[OperationWarning(code=code, message=error, details={"ticket_id": ticket.id})],
        )

    def _mark_ticket(self, db: Session, ticket: Ticket, *, sync_status: str, error: str | None) -> None:
        """Record sync bookkeeping on the ticket; never touches status or external reference."""
        try:
            db.query(Ticket).filter(Ticket.id == ticket.id).update(
                {
                    "external_sync_status": sync_status,
                    "external_last_sync_at": datetime.now(timezone.utc),
                    "external_sync_error": error[:500] if error else None,
                },
                synchronize_session=False,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to record Cedar sync status on ticket %s", ticket.id)
