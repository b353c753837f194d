"""Cedar CMMS work-order table access (SQLAlchemy Core against the external MSSQL database)."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, select, text, update
from sqlalchemy.engine import Connection

cedar_metadata = MetaData()

WO = Table(
    "WO",
    cedar_metadata,
    Column("WONO", Integer, primary_key=True),
    Column("WOCODE", String(20)),
    Column("WODATE", String(8)),
    Column("WOTIME", String(8)),
    Column("WO_PROBLEM", String(500)),
    Column("WO_CAUSE", String(500)),
    Column("TaskProcedure", String(2000)),
    Column("PUCODE", String(200)),
    Column("PRIORITYNO", Integer),
    Column("DEPTNO", Integer),
    Column("WOStatusNo", Integer),
    Column("WFStatusCode", String(10)),
    Column("WF_STEP", String(30)),
    Column("FLAGWAIT", String(1)),
    Column("FLAGAPPROVE", String(1)),
    Column("FLAGNOTAPPROVE", String(1)),
    Column("FLAGHIS", String(1)),
    Column("FLAGCANCEL", String(1)),
    Column("UPDATEUSER", Integer),
    Column("UPDATEDATE", String(8)),
    Column("UpdateTime", String(8)),
    Column("SCH_START_D", String(8)),
    Column("SCH_START_T", String(8)),
    Column("SCH_FINISH_D", String(8)),
    Column("SCH_FINISH_T", String(8)),
    Column("ACT_START_D", String(8)),
    Column("ACT_START_T", String(8)),
    Column("ACT_FINISH_D", String(8)),
    Column("ACT_FINISH_T", String(8)),
    Column("ACT_DURATION", Integer),
    Column("WORKBY", Integer),
    Column("COMPLETEUSER", Integer),
    Column("COMPLETEDATE", String(8)),
    Column("COMPLETE_TIME", String(8)),
    Column("ACCEPTUSER", Integer),
    Column("ACCEPTDATE", String(8)),
    Column("ACCEPT_TIME", String(8)),
    Column("ACCEPT_NOTE", String(500)),
    Column("HIS_DATE", String(8)),
    Column("HIS_TIME", String(8)),
)


class CedarGatewayError(RuntimeError):
    """Cedar returned something the sync engine cannot continue with."""


def cedar_wall_clock() -> datetime:
    """Cedar DATE/TIME columns hold the plant's local wall-clock time, not UTC."""
    return datetime.now()


def cedar_date(value: datetime) -> str:
    return value.strftime("%Y%m%d")


def cedar_time(value: datetime) -> str:
    return value.strftime("%H%M%S")


@dataclass(frozen=True)
class WorkOrderHeader:
    """Parameters for the Cedar WO insert procedure."""

    created_at: datetime
    problem: str
    location_code: str
    priority_no: int
    dept_no: int | None
    req_dept_no: int | None
    update_user: int
    assigned_to: int | None
    receive_person_no: int
    requester_name: str
    eq_no: int
    wo_type_no: int
    site_no: int
    sch_duration_minutes: int

    def procedure_parameters(self) -> dict[str, Any]:
        return {
            "WOCode": None,
            "WODate": cedar_date(self.created_at),
            "WOTime": cedar_time(self.created_at),
            "WRNo": 0,
            "WOProblem": self.problem,
            "WOPlan": "",
            "WOCause": "",
            "DEPTNO": self.dept_no,
            "WOTypeNo": self.wo_type_no,
            "PUCode": self.location_code,
            "EQNo": self.eq_no,
            "PriorityNo": self.priority_no,
            "UpdateUser": self.update_user,
            "AssignTo": self.assigned_to,
            "ReceivePersonNo": self.receive_person_no,
            "SiteNo": self.site_no,
            "SchDuration": self.sch_duration_minutes,
            "RequesterName": self.requester_name,
            "ReqDeptNo": self.req_dept_no,
        }


class CedarGateway:
    """Statements issued against Cedar; every method runs on a caller-owned connection."""

    insert_procedure = "sp_WOMain_Insert"

    def insert_work_order(self, conn: Connection, header: WorkOrderHeader) -> None:
        params = header.procedure_parameters()
        assignments = ", ".join(f"@{name} = :{name}" for name in params)
        conn.execute(text(f"EXEC {self.insert_procedure} {assignments}"), params)

    def last_work_order_id(self, conn: Connection) -> int | None:
        # sp_WOMain_Insert does not return the identity it assigned.
        value = conn.execute(text("SELECT IDENT_CURRENT('WO') AS WONO")).scalar()
        return int(value) if value else None

    def initiate_workflow(self, conn: Connection, external_id: int, columns: dict[str, Any]) -> None:
        result = conn.execute(update(WO).where(WO.c.WONO == external_id).values(**columns))
        if result.rowcount == 0:
            raise CedarGatewayError(f"Work Order {external_id} not found while initiating workflow")

    def work_order_code(self, conn: Connection, external_id: int) -> str | None:
        return conn.execute(select(WO.c.WOCODE).where(WO.c.WONO == external_id)).scalar()

    def update_work_order(self, conn: Connection, external_id: int, columns: dict[str, Any]) -> int:
        result = conn.execute(update(WO).where(WO.c.WONO == external_id).values(**columns))
        return result.rowcount

    def fetch_work_order(self, conn: Connection, external_id: int) -> dict[str, Any] | None:
        row = conn.execute(select(WO).where(WO.c.WONO == external_id)).mappings().first()
        return dict(row) if row is not None else None

    def ping(self, conn: Connection) -> None:
        conn.execute(select(WO.c.WONO).limit(1)).first()
