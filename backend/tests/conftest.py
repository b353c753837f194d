from __future__ import annotations

import copy
from contextlib import contextmanager
from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ticketing.cedar_gateway import CedarGatewayError
from ticketing.database import Base
from ticketing.models import ApprovalRule, Person, Ticket
from ticketing.services.cedar_sync import CedarSyncEngine
from ticketing.services.integration_log import IntegrationLog

FIXED_NOW = datetime(2026, 3, 2, 8, 30, 15)


@pytest.fixture()
def session_factory(tmp_path):
    # File database: the integration log writes through its own sessions.
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ticketing.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def add_person(db, person_id: int, *, username: str | None = None, department_no: int = 20, is_active=True):
    person = Person(
        id=person_id,
        username=username or f"person{person_id}",
        display_name=f"Person {person_id}",
        department_no=department_no,
        is_active=is_active,
    )
    db.add(person)
    db.commit()
    return person


def add_rule(db, person_id: int, level: int, plant=None, area=None, line=None, machine=None, is_active=True):
    rule = ApprovalRule(
        person_id=person_id,
        approval_level=level,
        plant_code=plant,
        area_code=area,
        line_code=line,
        machine_code=machine,
        is_active=is_active,
    )
    db.add(rule)
    db.commit()
    return rule


def add_ticket(db, *, created_by: int, status: str = "open", number: str = "TKT-20260302-001", **fields):
    values = {
        "ticket_number": number,
        "title": "Conveyor belt slipping",
        "status": status,
        "priority": "high",
        "plant_code": "PLT1",
        "area_code": "ASM",
        "line_code": "L01",
        "machine_code": "M07",
        "created_by": created_by,
    }
    values.update(fields)
    ticket = Ticket(**values)
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    return ticket


class FakeCedarDatabase:
    """Committed WO rows; connections work on a staged copy."""

    def __init__(self, next_id: int = 5000):
        self.work_orders: dict[int, dict] = {}
        self.next_id = next_id
        self.commits = 0


class _FakeConnection:
    def __init__(self, database: FakeCedarDatabase):
        self.work_orders = copy.deepcopy(database.work_orders)
        self.next_id = database.next_id
        self.last_id = None


class FakeCedarEngine:
    def __init__(self, database: FakeCedarDatabase):
        self.database = database

    @contextmanager
    def begin(self):
        conn = _FakeConnection(self.database)
        yield conn
        self.database.work_orders = conn.work_orders
        self.database.next_id = conn.next_id
        self.database.commits += 1

    @contextmanager
    def connect(self):
        yield _FakeConnection(self.database)


class FakeCedarGateway:
    """Mirrors CedarGateway against the fake connection; `fail_on` injects step failures."""

    def __init__(self):
        self.fail_on: set[str] = set()
        self.headers = []

    def _maybe_fail(self, step: str) -> None:
        if step in self.fail_on:
            raise CedarGatewayError(f"{step} failed")

    def insert_work_order(self, conn, header):
        self._maybe_fail("insert")
        conn.next_id += 1
        conn.last_id = conn.next_id
        self.headers.append(header)
        conn.work_orders[conn.last_id] = {
            "WONO": conn.last_id,
            "WOCODE": f"WO26-{conn.last_id}",
            "WO_PROBLEM": header.problem,
            "PUCODE": header.location_code,
            "PRIORITYNO": header.priority_no,
            "WOStatusNo": None,
            "WFStatusCode": None,
        }

    def last_work_order_id(self, conn):
        return conn.last_id

    def initiate_workflow(self, conn, external_id, columns):
        self._maybe_fail("initiate_workflow")
        conn.work_orders[external_id].update(columns)

    def work_order_code(self, conn, external_id):
        return conn.work_orders[external_id]["WOCODE"]

    def update_work_order(self, conn, external_id, columns):
        self._maybe_fail("update")
        if external_id not in conn.work_orders:
            return 0
        conn.work_orders[external_id].update(columns)
        return 1

    def fetch_work_order(self, conn, external_id):
        row = conn.work_orders.get(external_id)
        return dict(row) if row is not None else None

    def ping(self, conn):
        self._maybe_fail("ping")


@pytest.fixture()
def cedar():
    database = FakeCedarDatabase()
    return SimpleNamespace(
        database=database,
        engine=FakeCedarEngine(database),
        gateway=FakeCedarGateway(),
    )


@pytest.fixture()
def integration_log(session_factory):
    return IntegrationLog(session_factory, clock=lambda: FIXED_NOW)


@pytest.fixture()
def sync_engine(cedar, integration_log):
    return CedarSyncEngine(
        cedar_engine=cedar.engine,
        integration_log=integration_log,
        gateway=cedar.gateway,
        clock=lambda: FIXED_NOW,
    )
