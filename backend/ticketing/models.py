"""SQLAlchemy models for the local ticketing store."""
from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index,
    Integer, Numeric, String, Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

TICKET_STATUSES = (
    'open', 'assigned', 'in_progress', 'escalated', 'resolved',
    'rejected_pending_l3_review', 'rejected_final', 'reviewed',
    'completed', 'closed', 'reopened_in_progress',
)


class Person(Base):
    """Person known to both systems; id mirrors Cedar PERSONNO."""
    __tablename__ = "persons"

    id = Column(Integer, primary_key=True, autoincrement=False)
    username = Column(String(100), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    department_no = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    approval_rules = relationship("ApprovalRule", back_populates="person")


class ApprovalRule(Base):
    """
    Approval authority of one person at one level over one location scope.

    Scope columns form a prefix of plant/area/line/machine; all NULL means
    every location. Uniqueness of active (person, level, scope) rows is
    enforced by the grant use-case, not here.
    """
    __tablename__ = "approval_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(Integer, ForeignKey("persons.id"), nullable=False, index=True)
    approval_level = Column(Integer, nullable=False)
    plant_code = Column(String(50), nullable=True)
    area_code = Column(String(50), nullable=True)
    line_code = Column(String(50), nullable=True)
    machine_code = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(approval_level.in_([2, 3, 4]), name='chk_approval_level'),
        Index('idx_approval_rules_lookup', 'approval_level', 'is_active', 'plant_code'),
    )

    person = relationship("Person", back_populates="approval_rules")


class Ticket(Base):
    """Maintenance ticket (abnormal finding)."""
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_number = Column(String(30), unique=True, nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(40), default='open', nullable=False, index=True)
    severity_level = Column(String(20), default='medium', nullable=False)
    priority = Column(String(20), default='normal', nullable=False)

    # Asset location
    plant_code = Column(String(50), nullable=False, index=True)
    area_code = Column(String(50), nullable=True)
    line_code = Column(String(50), nullable=True)
    machine_code = Column(String(50), nullable=True)
    equipment_no = Column(Integer, nullable=True)

    created_by = Column(Integer, ForeignKey("persons.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    assigned_to = Column(Integer, ForeignKey("persons.id"), nullable=True, index=True)

    accepted_by = Column(Integer, ForeignKey("persons.id"), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    escalated_by = Column(Integer, ForeignKey("persons.id"), nullable=True)
    escalated_at = Column(DateTime(timezone=True), nullable=True)
    escalated_to = Column(Integer, ForeignKey("persons.id"), nullable=True)
    escalation_reason = Column(Text, nullable=True)
    started_by = Column(Integer, ForeignKey("persons.id"), nullable=True)
    actual_start_at = Column(DateTime(timezone=True), nullable=True)
    finished_by = Column(Integer, ForeignKey("persons.id"), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    actual_finish_at = Column(DateTime(timezone=True), nullable=True)
    actual_duration_minutes = Column(Integer, nullable=True)
    failure_cause = Column(Text, nullable=True)
    repair_procedure = Column(Text, nullable=True)
    completion_notes = Column(Text, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("persons.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_comment = Column(Text, nullable=True)
    satisfaction_rating = Column(Integer, nullable=True)
    rejected_by = Column(Integer, ForeignKey("persons.id"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    completed_by = Column(Integer, ForeignKey("persons.id"), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by = Column(Integer, ForeignKey("persons.id"), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    close_reason = Column(Text, nullable=True)
    reopened_by = Column(Integer, ForeignKey("persons.id"), nullable=True)
    reopened_at = Column(DateTime(timezone=True), nullable=True)
    reopen_reason = Column(Text, nullable=True)

    cost_avoidance = Column(Numeric(15, 2), nullable=True)
    downtime_avoidance_hours = Column(Numeric(8, 2), nullable=True)

    # Cedar work order reference; written once by the sync engine.
    external_wo_id = Column(Integer, nullable=True, unique=True)
    external_wo_code = Column(String(20), nullable=True)
    external_sync_status = Column(String(20), nullable=True, index=True)
    external_last_sync_at = Column(DateTime(timezone=True), nullable=True)
    external_sync_error = Column(Text, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(TICKET_STATUSES), name='chk_ticket_status'),
        CheckConstraint(
            priority.in_(['low', 'normal', 'high', 'urgent']),
            name='chk_ticket_priority'
        ),
        CheckConstraint(
            external_sync_status.in_(['pending', 'success', 'error']) | (external_sync_status == None),
            name='chk_ticket_external_sync_status'
        ),
    )

    history = relationship(
        "TicketStatusHistory",
        back_populates="ticket",
        order_by="TicketStatusHistory.id",
        cascade="all, delete-orphan",
    )


class TicketStatusHistory(Base):
    """One row per committed status transition."""
    __tablename__ = "ticket_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    old_status = Column(String(40), nullable=True)
    new_status = Column(String(40), nullable=False)
    action = Column(String(30), nullable=False)
    changed_by = Column(Integer, ForeignKey("persons.id"), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    ticket = relationship("Ticket", back_populates="history")


class IntegrationLogEntry(Base):
    """Append-only record of one Cedar sync attempt."""
    __tablename__ = "integration_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(Integer, nullable=False, index=True)
    external_wo_id = Column(Integer, nullable=True)
    action = Column(String(30), nullable=False, index=True)
    ticket_action = Column(String(30), nullable=True)
    status = Column(String(20), nullable=False, index=True)
    request_data = Column(JSON, nullable=True)
    payload_fingerprint = Column(String(64), nullable=False)
    response_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(action.in_(['create', 'status_update']), name='chk_integration_action'),
        CheckConstraint(status.in_(['success', 'error']), name='chk_integration_status'),
    )
