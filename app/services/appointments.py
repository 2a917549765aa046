"""
Appointment save flow and the deduplicated calendar view.

Saving an appointment is the one operation here a user initiates directly, so
store errors propagate to the caller. The follow-up work (meeting-link notice,
reminder scheduling) is best effort and never undoes a save.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

import db
from app.errors import DataUnavailableError
from app.services.reconciliation import CalendarAdapter, ReconciliationSession
from app.services.reminder_rules import format_date, format_time
from app.services.reminder_scheduler import ReminderScheduler
from app.types.calendar_contract import Appointment, DisplayEntry, Recipient, ScheduleReport

_LOGGER = logging.getLogger(__name__)


class AppointmentNotFound(LookupError):
    pass


def new_appointment_message(appointment: Appointment, tz: Optional[str] = None) -> str:
    when = f"{format_date(appointment.start, tz)}, {format_time(appointment.start, tz)}"
    return (
        f'Your appointment "{appointment.title}" is scheduled for {when}. '
        f"Meeting link: {appointment.meeting_link}"
    )


async def notify_new_appointment(
    owner: str,
    appointment: Appointment,
    scheduler: ReminderScheduler,
    store: Any = db,
) -> Appointment:
    """Send the meeting link to the contacts once; flags the appointment on success."""
    if not appointment.meeting_link or appointment.notification_sent or not appointment.contacts:
        return appointment

    recipients = [Recipient(id=c.id, name=c.name, phone=c.phone) for c in appointment.contacts]
    context = {"owner": owner, "appointment_id": appointment.id, "kind": "new_appointment"}
    delivered, _ = await scheduler.dispatch(recipients, new_appointment_message(appointment, scheduler.tz), context)
    if not delivered:
        return appointment

    updated = await store.update_appointment(owner, appointment.id, {"notification_sent": True})
    return updated or appointment.model_copy(update={"notification_sent": True})


async def save_appointment(
    owner: str,
    appointment: Appointment,
    now: Optional[datetime] = None,
    scheduler: Optional[ReminderScheduler] = None,
    store: Any = db,
) -> Tuple[Appointment, ScheduleReport]:
    """Create (no id) or update an appointment, then notify and schedule reminders."""
    scheduler = scheduler or ReminderScheduler(store=store)

    if appointment.id:
        # only what the caller sent; omitted fields such as notification_sent keep their stored value
        patch = appointment.model_dump(exclude={"id", "owner"}, exclude_unset=True)
        saved = await store.update_appointment(owner, appointment.id, patch)
        if saved is None:
            raise AppointmentNotFound(appointment.id)
    else:
        saved = await store.create_appointment(owner, appointment)

    try:
        saved = await notify_new_appointment(owner, saved, scheduler, store)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.error("[Appointment] %s/%s: new-appointment notice failed: %s", owner, saved.id, exc)

    report = await scheduler.schedule(owner, saved, now)
    return saved, report


async def delete_appointment(owner: str, appointment_id: str, store: Any = db) -> None:
    if not await store.delete_appointment(owner, appointment_id):
        raise AppointmentNotFound(appointment_id)


async def load_display_set(
    owner: str,
    adapter: CalendarAdapter,
    time_min: Optional[datetime] = None,
    time_max: Optional[datetime] = None,
    store: Any = db,
) -> List[DisplayEntry]:
    """Our appointments plus every external event that is not one of them."""
    session = ReconciliationSession(owner, adapter)
    try:
        appointments = await store.read_appointments(owner, time_min, time_max)
    except DataUnavailableError as exc:
        _LOGGER.warning("[Appointment] %s: %s", owner, exc)
        appointments = None
    session.load_appointments(appointments)
    config = await store.get_calendar_config(owner)
    await session.refresh(config, time_min, time_max)
    return session.display_set()
