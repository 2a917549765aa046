"""
Async DB helpers for appointments, reminder settings and scheduled reminders.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.

Every helper takes the owner explicitly; nothing is read from ambient state.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Iterable, Sequence
from uuid import uuid4

from pydantic import ValidationError as ModelValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine
)

from app.errors import DataUnavailableError
from app.services.reminder_rules import default_rules
from app.types.calendar_contract import (
    Appointment,
    CalendarConfig,
    Employee,
    Recipient,
    ReminderRule,
    ScheduledReminder,
)
from db.models import (
    AppointmentRow,
    Base,
    CalendarConfigRow,
    EmployeeRow,
    ReminderSettingsRow,
    ScheduledReminderRow,
)

_LOGGER = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────
# 1. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        _engine = create_async_engine(_build_url(), pool_size=5, max_overflow=5)
    return _engine

def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async def _session_scope():
        async with _session_maker() as session:
            yield session
    return _session_scope()


async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


# ──────────────────────────────────────────────────────────────────────
# 2. Row <-> model conversion
# ──────────────────────────────────────────────────────────────────────

def _to_appointment(row: AppointmentRow) -> Appointment:
    return Appointment(
        id=row.id,
        owner=row.owner,
        title=row.title or "",
        start=row.start_time,
        end=row.end_time,
        status=row.status,
        type=row.type,
        staff=row.staff or [],
        contacts=row.contacts or [],
        tags=row.tags or [],
        meeting_link=row.meeting_link,
        notification_sent=bool(row.notification_sent),
        color=row.color,
        details=row.details or "",
        metadata=row.extra or {},
    )


def _appointment_columns(appt: Appointment) -> dict[str, Any]:
    return {
        "title": appt.title,
        "start_time": appt.start,
        "end_time": appt.end,
        "status": appt.status,
        "type": appt.type,
        "staff": list(appt.staff),
        "contacts": [c.model_dump() for c in appt.contacts],
        "tags": list(appt.tags),
        "meeting_link": appt.meeting_link,
        "notification_sent": appt.notification_sent,
        "color": appt.color,
        "details": appt.details,
        "extra": dict(appt.metadata),
    }


def _to_scheduled(row: ScheduledReminderRow) -> ScheduledReminder:
    return ScheduledReminder(
        id=row.id,
        owner=row.owner,
        appointment_id=row.appointment_id,
        rule=ReminderRule.model_validate(row.rule),
        recipient_class=row.recipient_class,
        recipients=[Recipient.model_validate(r) for r in row.recipients or []],
        message=row.message,
        trigger_time=row.trigger_time,
        processed=bool(row.processed),
        created_at=row.created_at,
        processed_at=row.processed_at,
    )


# ──────────────────────────────────────────────────────────────────────
# 3. Appointment store
# ──────────────────────────────────────────────────────────────────────

async def read_appointments(
    owner: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Appointment]:
    try:
        async for s in get_session():
            stmt = select(AppointmentRow).where(AppointmentRow.owner == owner)
            if start:
                stmt = stmt.where(AppointmentRow.end_time >= start)
            if end:
                stmt = stmt.where(AppointmentRow.start_time <= end)
            stmt = stmt.order_by(AppointmentRow.start_time)
            res = await s.execute(stmt)
            return [_to_appointment(r) for r in res.scalars()]
    except (SQLAlchemyError, OSError) as exc:
        raise DataUnavailableError(f"appointments for {owner} could not be read: {exc}") from exc


async def get_appointment(owner: str, appointment_id: str) -> Appointment | None:
    async for s in get_session():
        row = await s.get(AppointmentRow, appointment_id)
        if row is None or row.owner != owner:
            return None
        return _to_appointment(row)


async def create_appointment(owner: str, appointment: Appointment) -> Appointment:
    appointment_id = appointment.id or str(uuid4())
    row = AppointmentRow(id=appointment_id, owner=owner, **_appointment_columns(appointment))
    async for s in get_session():
        s.add(row)
        await s.commit()
    return appointment.model_copy(update={"id": appointment_id, "owner": owner})


async def update_appointment(owner: str, appointment_id: str, patch: dict[str, Any]) -> Appointment | None:
    """Apply ``patch`` (Appointment field names) and return the stored result."""
    async for s in get_session():
        row = await s.get(AppointmentRow, appointment_id)
        if row is None or row.owner != owner:
            return None
        merged = _to_appointment(row).model_dump()
        merged.update(patch)
        updated = Appointment.model_validate(merged)
        for column, value in _appointment_columns(updated).items():
            setattr(row, column, value)
        await s.commit()
        return updated


async def delete_appointment(owner: str, appointment_id: str) -> bool:
    async for s in get_session():
        res = await s.execute(
            delete(AppointmentRow)
            .where(AppointmentRow.id == appointment_id, AppointmentRow.owner == owner)
        )
        await s.commit()
        return res.rowcount > 0


# ──────────────────────────────────────────────────────────────────────
# 4. Employees, reminder settings, calendar config
# ──────────────────────────────────────────────────────────────────────

async def fetch_employees(owner: str, ids: Iterable[str] | None = None) -> list[Employee]:
    async for s in get_session():
        stmt = select(EmployeeRow).where(EmployeeRow.owner == owner)
        if ids is not None:
            stmt = stmt.where(EmployeeRow.id.in_(list(ids)))
        res = await s.execute(stmt)
        return [
            Employee(id=r.id, name=r.name, phone_number=r.phone_number)
            for r in res.scalars()
        ]


def _parse_rules(owner: str, raw: Sequence[dict[str, Any]]) -> list[ReminderRule]:
    rules = []
    for index, item in enumerate(raw):
        try:
            rules.append(ReminderRule.model_validate(item))
        except ModelValidationError as exc:
            _LOGGER.warning("[Settings] %s: ignoring malformed reminder rule %d: %s", owner, index, exc)
    return rules


async def get_reminder_rules(owner: str) -> list[ReminderRule]:
    """The owner's rules; the defaults are seeded and stored on first read."""
    async for s in get_session():
        row = await s.get(ReminderSettingsRow, owner)
        if row is not None and row.reminders:
            return _parse_rules(owner, row.reminders)

        seeded = default_rules()
        payload = [r.model_dump() for r in seeded]
        if row is None:
            s.add(ReminderSettingsRow(owner=owner, reminders=payload))
        else:
            row.reminders = payload
        await s.commit()
        _LOGGER.info("[Settings] %s: seeded %d default reminder rules", owner, len(seeded))
        return seeded


async def put_reminder_rules(owner: str, rules: Sequence[ReminderRule]) -> list[ReminderRule]:
    payload = [r.model_dump() for r in rules]
    async for s in get_session():
        row = await s.get(ReminderSettingsRow, owner)
        if row is None:
            s.add(ReminderSettingsRow(owner=owner, reminders=payload))
        else:
            row.reminders = payload
        await s.commit()
    return list(rules)


async def get_calendar_config(owner: str) -> CalendarConfig:
    async for s in get_session():
        row = await s.get(CalendarConfigRow, owner)
        if row is None:
            return CalendarConfig()
        return CalendarConfig(
            calendar_id=row.calendar_id or "",
            additional_calendar_ids=row.additional_calendar_ids or [],
        )


async def put_calendar_config(owner: str, config: CalendarConfig) -> CalendarConfig:
    async for s in get_session():
        row = await s.get(CalendarConfigRow, owner)
        if row is None:
            row = CalendarConfigRow(owner=owner)
            s.add(row)
        row.calendar_id = config.calendar_id.strip()
        row.additional_calendar_ids = [c.strip() for c in config.additional_calendar_ids]
        await s.commit()
    return config


# ──────────────────────────────────────────────────────────────────────
# 5. Scheduled reminders
# ──────────────────────────────────────────────────────────────────────

async def insert_scheduled_reminder(reminder: ScheduledReminder) -> str:
    rid = reminder.id or str(uuid4())
    row = ScheduledReminderRow(
        id=rid,
        owner=reminder.owner,
        appointment_id=reminder.appointment_id,
        recipient_class=reminder.recipient_class,
        rule=reminder.rule.model_dump(),
        recipients=[r.model_dump() for r in reminder.recipients],
        message=reminder.message,
        trigger_time=reminder.trigger_time,
        processed=False,
    )
    async for s in get_session():
        s.add(row)
        await s.commit()
    return rid


async def claim_scheduled_reminder(reminder_id: str) -> bool:
    """Atomically flip processed false -> true; True only for the winner."""
    async for s in get_session():
        res = await s.execute(
            update(ScheduledReminderRow)
            .where(
                ScheduledReminderRow.id == reminder_id,
                ScheduledReminderRow.processed.is_(False),
            )
            .values(processed=True, processed_at=func.now())
            .returning(ScheduledReminderRow.id)
        )
        await s.commit()
        return res.scalar_one_or_none() is not None


async def mark_reminder_processed(
    appointment_id: str,
    trigger_time: datetime,
    recipient_class: str | None = None,
) -> int:
    """Idempotent: re-marking a processed reminder changes nothing."""
    async for s in get_session():
        stmt = (
            update(ScheduledReminderRow)
            .where(
                ScheduledReminderRow.appointment_id == appointment_id,
                ScheduledReminderRow.trigger_time == trigger_time,
            )
            .values(
                processed=True,
                processed_at=func.coalesce(ScheduledReminderRow.processed_at, func.now()),
            )
        )
        if recipient_class:
            stmt = stmt.where(ScheduledReminderRow.recipient_class == recipient_class)
        res = await s.execute(stmt)
        await s.commit()
        return res.rowcount


async def fetch_due_reminders(now: datetime | None = None, limit: int = 100) -> list[ScheduledReminder]:
    now = now or datetime.now(timezone.utc)
    async for s in get_session():
        stmt = (
            select(ScheduledReminderRow)
            .where(
                ScheduledReminderRow.processed.is_(False),
                ScheduledReminderRow.trigger_time <= now,
            )
            .order_by(ScheduledReminderRow.trigger_time)
            .limit(limit)
        )
        res = await s.execute(stmt)
        return [_to_scheduled(r) for r in res.scalars()]


async def get_scheduled_reminder(reminder_id: str) -> ScheduledReminder | None:
    async for s in get_session():
        row = await s.get(ScheduledReminderRow, reminder_id)
        return _to_scheduled(row) if row else None
