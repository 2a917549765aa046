"""Celery tasks consuming the scheduled_reminders table.

``dispatch_due`` runs from beat every minute and enqueues one ``handle`` task
per due reminder. ``handle`` claims the record before sending, so a reminder
already sent by the eager path at save time is skipped here.
"""

from __future__ import annotations

import asyncio
import logging

from app.celery_app import celery_app
from app.services.reminder_scheduler import ReminderScheduler
from app.types.calendar_contract import ScheduleReport
from config import settings
import db

_LOGGER = logging.getLogger(__name__)


async def _handle(reminder_id: str) -> ScheduleReport:
    report = ScheduleReport()
    try:
        record = await db.get_scheduled_reminder(reminder_id)
        if record is None or record.processed:
            report.skipped_claims += 1
            return report
        await ReminderScheduler().claim_and_dispatch(record, report)
        return report
    finally:
        # the pool belongs to this asyncio.run loop; the next task gets a new one
        await db.dispose_engine()


async def _due_reminder_ids() -> list[str]:
    try:
        due = await db.fetch_due_reminders(limit=settings.DUE_REMINDER_BATCH_SIZE)
    finally:
        await db.dispose_engine()
    return [record.id for record in due]


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.reminder.handle", bind=True, max_retries=3)
def handle(self, reminder_id: str):  # noqa: D401
    """Claim and send a single scheduled reminder."""
    try:
        report = asyncio.run(_handle(reminder_id))
    except Exception as exc:  # noqa: BLE001
        # only store access can fail here; sends are isolated per recipient
        raise self.retry(exc=exc, countdown=30)
    return report.model_dump()


@celery_app.task(name="app.workers.reminder.dispatch_due", bind=True)
def dispatch_due(self):  # noqa: D401
    """Fetch due reminders and enqueue handle tasks for each."""
    try:
        due = asyncio.run(_due_reminder_ids())
    except Exception as exc:  # noqa: BLE001
        self.retry(exc=exc, countdown=30)
        return

    for reminder_id in due:
        celery_app.send_task(
            "app.workers.reminder.handle",
            args=[reminder_id],
            queue="reminder",
        )
    if due:
        _LOGGER.info("[Reminder] beat: enqueued %d due reminder(s)", len(due))
