import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, status
from pydantic import BaseModel

import db
from app.services import appointments as appointment_service
from app.services.calendar_feed import GoogleCalendarAdapter
from app.types.calendar_contract import (
    Appointment,
    CalendarConfig,
    DisplayEntry,
    ReminderRule,
    ScheduleReport,
)
from config import settings

logging.basicConfig(level=settings.LOG_LEVEL)
_LOGGER = logging.getLogger(__name__)

app = FastAPI()
calendar_adapter = GoogleCalendarAdapter()


@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


# --------------------------------------------
# Request / response bodies
# --------------------------------------------

class SaveAppointmentResponse(BaseModel):
    appointment: Appointment
    reminders: ScheduleReport


class ReminderSettingsBody(BaseModel):
    owner: str
    reminders: List[ReminderRule]


class CalendarConfigBody(CalendarConfig):
    owner: str


class ConnectionTestBody(BaseModel):
    calendar_id: str


# --------------------------------------------
# Calendar view
# --------------------------------------------

@app.get("/v1/calendar/events", response_model=List[DisplayEntry])
async def calendar_events(
    owner: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    return await appointment_service.load_display_set(owner, calendar_adapter, start, end)


# --------------------------------------------
# Appointments
# --------------------------------------------

@app.post("/v1/appointments", response_model=SaveAppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(appointment: Appointment, owner: str = Query(...)):
    appointment = appointment.model_copy(update={"id": None})
    try:
        saved, report = await appointment_service.save_appointment(owner, appointment)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.error("[Appointment] %s: create failed: %s", owner, exc)
        raise HTTPException(500, "Failed to save appointment")
    return SaveAppointmentResponse(appointment=saved, reminders=report)


@app.put("/v1/appointments/{appointment_id}", response_model=SaveAppointmentResponse)
async def update_appointment(appointment_id: str, appointment: Appointment, owner: str = Query(...)):
    appointment = appointment.model_copy(update={"id": appointment_id})
    try:
        saved, report = await appointment_service.save_appointment(owner, appointment)
    except appointment_service.AppointmentNotFound:
        raise HTTPException(404, "Appointment not found")
    except Exception as exc:  # noqa: BLE001
        _LOGGER.error("[Appointment] %s/%s: update failed: %s", owner, appointment_id, exc)
        raise HTTPException(500, "Failed to save appointment")
    return SaveAppointmentResponse(appointment=saved, reminders=report)


@app.delete("/v1/appointments/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(appointment_id: str, owner: str = Query(...)):
    try:
        await appointment_service.delete_appointment(owner, appointment_id)
    except appointment_service.AppointmentNotFound:
        raise HTTPException(404, "Appointment not found")


# --------------------------------------------
# Settings
# --------------------------------------------

@app.get("/v1/reminder-settings", response_model=ReminderSettingsBody)
async def get_reminder_settings(owner: str):
    return ReminderSettingsBody(owner=owner, reminders=await db.get_reminder_rules(owner))


@app.put("/v1/reminder-settings", response_model=ReminderSettingsBody)
async def put_reminder_settings(body: ReminderSettingsBody):
    rules = await db.put_reminder_rules(body.owner, body.reminders)
    return ReminderSettingsBody(owner=body.owner, reminders=rules)


@app.get("/v1/calendar-config", response_model=CalendarConfig)
async def get_calendar_config(owner: str):
    return await db.get_calendar_config(owner)


@app.put("/v1/calendar-config", response_model=CalendarConfig)
async def put_calendar_config(body: CalendarConfigBody):
    config = CalendarConfig(calendar_id=body.calendar_id, additional_calendar_ids=body.additional_calendar_ids)
    if config.calendar_id.strip():
        result = await asyncio.to_thread(calendar_adapter.test_connection, config.calendar_id)
        if not result["success"]:
            raise HTTPException(400, result["error"])
    return await db.put_calendar_config(body.owner, config)


@app.post("/v1/calendar-config/test")
async def test_calendar_connection(body: ConnectionTestBody):
    return await asyncio.to_thread(calendar_adapter.test_connection, body.calendar_id)
