"""Periodic scanner to send due reminders.

Alternative to the Celery beat task for deployments that only have cron.
Run every minute:
    python -m app.scripts.scan_due_reminders
"""

from __future__ import annotations

import asyncio
import logging

from app.services.reminder_scheduler import ReminderScheduler
from config import settings
import db

_LOGGER = logging.getLogger("scan_due_reminders")


async def main() -> None:
    try:
        report = await ReminderScheduler().dispatch_due()
    finally:
        await db.dispose_engine()
    _LOGGER.info(
        "[CRON] %d reminder(s) sent (%d delivered, %d failed), %d already claimed",
        report.dispatched, report.delivered, report.failed, report.skipped_claims,
    )


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=settings.LOG_LEVEL)
    _LOGGER.info("[CRON] scan_due_reminders: job started")
    try:
        asyncio.run(main())
        _LOGGER.info("[CRON] scan_due_reminders: job completed successfully")
    except Exception as e:  # noqa: BLE001
        _LOGGER.error("[CRON] scan_due_reminders: job failed: %s", e)
