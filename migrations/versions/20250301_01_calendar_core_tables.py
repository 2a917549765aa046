"""calendar core tables

Revision ID: 20250301_01
Revises: None
Create Date: 2025-03-01
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20250301_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "appointments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("owner", sa.String(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("start_time", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("end_time", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="new"),
        sa.Column("type", sa.String(), nullable=True),
        sa.Column("staff", sa.JSON(), nullable=True),
        sa.Column("contacts", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("meeting_link", sa.String(), nullable=True),
        sa.Column("notification_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("details", sa.Text(), nullable=False, server_default=""),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_appointments_owner", "appointments", ["owner"])

    op.create_table(
        "employees",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("owner", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
    )
    op.create_index("ix_employees_owner", "employees", ["owner"])

    op.create_table(
        "reminder_settings",
        sa.Column("owner", sa.String(), primary_key=True),
        sa.Column("reminders", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "calendar_configs",
        sa.Column("owner", sa.String(), primary_key=True),
        sa.Column("calendar_id", sa.String(), nullable=False, server_default=""),
        sa.Column("additional_calendar_ids", sa.JSON(), nullable=True),
    )

    op.create_table(
        "scheduled_reminders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner", sa.String(), nullable=False),
        sa.Column("appointment_id", sa.String(), nullable=False),
        sa.Column("recipient_class", sa.String(), nullable=False),
        sa.Column("rule", sa.JSON(), nullable=False),
        sa.Column("recipients", sa.JSON(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("trigger_time", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_scheduled_reminders_appointment_id", "scheduled_reminders", ["appointment_id"])
    op.create_index("ix_scheduled_reminders_pending", "scheduled_reminders", ["processed", "trigger_time"])


def downgrade() -> None:
    op.drop_table("scheduled_reminders")
    op.drop_table("calendar_configs")
    op.drop_table("reminder_settings")
    op.drop_table("employees")
    op.drop_table("appointments")
