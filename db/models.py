"""ORM models for appointments, reminder settings and scheduled reminders."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class AppointmentRow(Base):
    __tablename__ = "appointments"

    id:                Mapped[str] = mapped_column(primary_key=True)
    owner:             Mapped[str] = mapped_column(index=True)
    title:             Mapped[str] = mapped_column(Text, default="")
    start_time:        Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_time:          Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status:            Mapped[str] = mapped_column(default="new")
    type:              Mapped[str | None]
    staff:             Mapped[list[str]] = mapped_column(JSON, default=list)
    contacts:          Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    tags:              Mapped[list[str]] = mapped_column(JSON, default=list)
    meeting_link:      Mapped[str | None]
    notification_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    color:             Mapped[str | None]
    details:           Mapped[str] = mapped_column(Text, default="")
    extra:             Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at:        Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at:        Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class EmployeeRow(Base):
    __tablename__ = "employees"

    id:           Mapped[str] = mapped_column(primary_key=True)
    owner:        Mapped[str] = mapped_column(index=True)
    name:         Mapped[str | None]
    phone_number: Mapped[str | None]


class ReminderSettingsRow(Base):
    __tablename__ = "reminder_settings"

    owner:      Mapped[str] = mapped_column(primary_key=True)
    reminders:  Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class CalendarConfigRow(Base):
    __tablename__ = "calendar_configs"

    owner:                   Mapped[str] = mapped_column(primary_key=True)
    calendar_id:             Mapped[str] = mapped_column(default="")
    additional_calendar_ids: Mapped[list[str]] = mapped_column(JSON, default=list)


class ScheduledReminderRow(Base):
    __tablename__ = "scheduled_reminders"

    id:              Mapped[str] = mapped_column(primary_key=True)
    owner:           Mapped[str]
    appointment_id:  Mapped[str] = mapped_column(index=True)
    recipient_class: Mapped[str]
    rule:            Mapped[dict[str, Any]] = mapped_column(JSON)
    recipients:      Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    message:         Mapped[str] = mapped_column(Text)
    trigger_time:    Mapped[datetime] = mapped_column(DateTime(timezone=True))
    processed:       Mapped[bool] = mapped_column(Boolean, default=False)
    created_at:      Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processed_at:    Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_scheduled_reminders_pending", "processed", "trigger_time"),
    )
