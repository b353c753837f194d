"""initial ticketing schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "persons",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("department_no", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_persons_username", "persons", ["username"], unique=True)

    op.create_table(
        "approval_rules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("person_id", sa.Integer(), nullable=False),
        sa.Column("approval_level", sa.Integer(), nullable=False),
        sa.Column("plant_code", sa.String(length=50), nullable=True),
        sa.Column("area_code", sa.String(length=50), nullable=True),
        sa.Column("line_code", sa.String(length=50), nullable=True),
        sa.Column("machine_code", sa.String(length=50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.CheckConstraint("approval_level IN (2, 3, 4)", name="chk_approval_level"),
        sa.ForeignKeyConstraint(["person_id"], ["persons.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_approval_rules_person_id", "approval_rules", ["person_id"], unique=False)
    op.create_index(
        "idx_approval_rules_lookup",
        "approval_rules",
        ["approval_level", "is_active", "plant_code"],
        unique=False,
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ticket_number", sa.String(length=30), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="open"),
        sa.Column("severity_level", sa.String(length=20), nullable=False, server_default="medium"),
        sa.Column("priority", sa.String(length=20), nullable=False, server_default="normal"),
        sa.Column("plant_code", sa.String(length=50), nullable=False),
        sa.Column("area_code", sa.String(length=50), nullable=True),
        sa.Column("line_code", sa.String(length=50), nullable=True),
        sa.Column("machine_code", sa.String(length=50), nullable=True),
        sa.Column("equipment_no", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("assigned_to", sa.Integer(), nullable=True),
        sa.Column("accepted_by", sa.Integer(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated_by", sa.Integer(), nullable=True),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated_to", sa.Integer(), nullable=True),
        sa.Column("escalation_reason", sa.Text(), nullable=True),
        sa.Column("started_by", sa.Integer(), nullable=True),
        sa.Column("actual_start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_by", sa.Integer(), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_finish_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("failure_cause", sa.Text(), nullable=True),
        sa.Column("repair_procedure", sa.Text(), nullable=True),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_comment", sa.Text(), nullable=True),
        sa.Column("satisfaction_rating", sa.Integer(), nullable=True),
        sa.Column("rejected_by", sa.Integer(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("completed_by", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.Integer(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("close_reason", sa.Text(), nullable=True),
        sa.Column("reopened_by", sa.Integer(), nullable=True),
        sa.Column("reopened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reopen_reason", sa.Text(), nullable=True),
        sa.Column("cost_avoidance", sa.Numeric(15, 2), nullable=True),
        sa.Column("downtime_avoidance_hours", sa.Numeric(8, 2), nullable=True),
        sa.Column("external_wo_id", sa.Integer(), nullable=True),
        sa.Column("external_wo_code", sa.String(length=20), nullable=True),
        sa.Column("external_sync_status", sa.String(length=20), nullable=True),
        sa.Column("external_last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_sync_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.CheckConstraint(
            "status IN ('open', 'assigned', 'in_progress', 'escalated', 'resolved', "
            "'rejected_pending_l3_review', 'rejected_final', 'reviewed', 'completed', "
            "'closed', 'reopened_in_progress')",
            name="chk_ticket_status",
        ),
        sa.CheckConstraint("priority IN ('low', 'normal', 'high', 'urgent')", name="chk_ticket_priority"),
        sa.CheckConstraint(
            "external_sync_status IN ('pending', 'success', 'error') OR external_sync_status IS NULL",
            name="chk_ticket_external_sync_status",
        ),
        sa.ForeignKeyConstraint(["created_by"], ["persons.id"]),
        sa.ForeignKeyConstraint(["assigned_to"], ["persons.id"]),
        sa.ForeignKeyConstraint(["accepted_by"], ["persons.id"]),
        sa.ForeignKeyConstraint(["escalated_by"], ["persons.id"]),
        sa.ForeignKeyConstraint(["escalated_to"], ["persons.id"]),
        sa.ForeignKeyConstraint(["started_by"], ["persons.id"]),
        sa.ForeignKeyConstraint(["finished_by"], ["persons.id"]),
        sa.ForeignKeyConstraint(["reviewed_by"], ["persons.id"]),
        sa.ForeignKeyConstraint(["rejected_by"], ["persons.id"]),
        sa.ForeignKeyConstraint(["completed_by"], ["persons.id"]),
        sa.ForeignKeyConstraint(["closed_by"], ["persons.id"]),
        sa.ForeignKeyConstraint(["reopened_by"], ["persons.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_wo_id", name="uq_tickets_external_wo_id"),
    )
    op.create_index("ix_tickets_ticket_number", "tickets", ["ticket_number"], unique=True)
    op.create_index("ix_tickets_status", "tickets", ["status"], unique=False)
    op.create_index("ix_tickets_plant_code", "tickets", ["plant_code"], unique=False)
    op.create_index("ix_tickets_created_by", "tickets", ["created_by"], unique=False)
    op.create_index("ix_tickets_assigned_to", "tickets", ["assigned_to"], unique=False)
    op.create_index("ix_tickets_external_sync_status", "tickets", ["external_sync_status"], unique=False)

    op.create_table(
        "ticket_status_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=False),
        sa.Column("old_status", sa.String(length=40), nullable=True),
        sa.Column("new_status", sa.String(length=40), nullable=False),
        sa.Column("action", sa.String(length=30), nullable=False),
        sa.Column("changed_by", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["changed_by"], ["persons.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ticket_status_history_ticket_id", "ticket_status_history", ["ticket_id"], unique=False)
    op.create_index("ix_ticket_status_history_created_at", "ticket_status_history", ["created_at"], unique=False)

    op.create_table(
        "integration_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=False),
        sa.Column("external_wo_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=30), nullable=False),
        sa.Column("ticket_action", sa.String(length=30), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("request_data", sa.JSON(), nullable=True),
        sa.Column("payload_fingerprint", sa.String(length=64), nullable=False),
        sa.Column("response_data", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("action IN ('create', 'status_update')", name="chk_integration_action"),
        sa.CheckConstraint("status IN ('success', 'error')", name="chk_integration_status"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_integration_log_ticket_id", "integration_log", ["ticket_id"], unique=False)
    op.create_index("ix_integration_log_action", "integration_log", ["action"], unique=False)
    op.create_index("ix_integration_log_status", "integration_log", ["status"], unique=False)
    op.create_index("ix_integration_log_created_at", "integration_log", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_table("integration_log")
    op.drop_table("ticket_status_history")
    op.drop_table("tickets")
    op.drop_table("approval_rules")
    op.drop_index("ix_persons_username", table_name="persons")
    op.drop_table("persons")
