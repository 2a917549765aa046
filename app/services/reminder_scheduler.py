"""
Reminder scheduler & dispatcher.

``schedule`` runs on every appointment create/update: it persists one
ScheduledReminder per dispatch job and, for jobs due within the lookahead
window, sends them straight away. ``dispatch_due`` is the periodic consumer of
the same records (Celery beat / cron).

Both paths claim a record with an atomic check-and-set on its processed flag
before sending, so a reminder picked up eagerly is never sent again by the
periodic worker and vice versa. A record is processed once a dispatch has been
attempted, whether or not every recipient received it; there is no retry here.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple

import db
from app.errors import TransientDeliveryError
from app.services.reminder_rules import compute_schedule
from app.types.calendar_contract import (
    Appointment,
    Recipient,
    ScheduledReminder,
    ScheduleReport,
    as_aware,
)
from app.utils.sms import send_notification
from config import settings

_LOGGER = logging.getLogger(__name__)

SendFn = Callable[[Recipient, str, Mapping[str, Any]], Awaitable[bool]]

LOOKAHEAD = timedelta(minutes=settings.REMINDER_LOOKAHEAD_MINUTES)


class ReminderScheduler:
    """
    ``store`` is anything exposing the reminder helpers of the ``db`` package
    (get_reminder_rules, fetch_employees, insert_scheduled_reminder,
    claim_scheduled_reminder, mark_reminder_processed, fetch_due_reminders).
    """

    def __init__(
        self,
        store: Any = db,
        send: SendFn = send_notification,
        lookahead: timedelta = LOOKAHEAD,
        tz: Optional[str] = None,
    ):
        self.store = store
        self.send = send
        self.lookahead = lookahead
        self.tz = tz

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------
    async def _send_one(self, recipient: Recipient, message: str, context: Mapping[str, Any]) -> None:
        try:
            ok = await self.send(recipient, message, context)
        except Exception as exc:  # noqa: BLE001
            raise TransientDeliveryError(recipient.address, str(exc)) from exc
        if ok is False:
            raise TransientDeliveryError(recipient.address, "gateway reported failure")

    async def dispatch(
        self,
        recipients: Sequence[Recipient],
        message: str,
        context: Mapping[str, Any],
    ) -> Tuple[int, int]:
        """Send to every recipient concurrently; returns (delivered, failed)."""
        if not recipients:
            _LOGGER.warning("[Reminder] no recipients for %s", dict(context))
            return 0, 0

        results = await asyncio.gather(
            *(self._send_one(r, message, context) for r in recipients),
            return_exceptions=True,
        )
        failed = 0
        for result in results:
            if isinstance(result, BaseException):
                failed += 1
                _LOGGER.warning("[Reminder] %s (%s)", result, dict(context))
        return len(recipients) - failed, failed

    async def claim_and_dispatch(self, record: ScheduledReminder, report: ScheduleReport) -> None:
        try:
            claimed = await self.store.claim_scheduled_reminder(record.id)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("[Reminder] could not claim %s: %s", record.id, exc)
            return
        if not claimed:
            report.skipped_claims += 1
            _LOGGER.info("[Reminder] %s already processed elsewhere, not sending", record.id)
            return

        context: Dict[str, Any] = {
            "owner": record.owner,
            "appointment_id": record.appointment_id,
            "recipient_class": record.recipient_class,
            "kind": "reminder",
        }
        delivered, failed = await self.dispatch(record.recipients, record.message, context)
        report.dispatched += 1
        report.delivered += delivered
        report.failed += failed

        try:
            await self.store.mark_reminder_processed(
                record.appointment_id, record.trigger_time, record.recipient_class
            )
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("[Reminder] could not mark %s processed: %s", record.id, exc)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def schedule(self, owner: str, appointment: Appointment, now: Optional[datetime] = None) -> ScheduleReport:
        """Persist every reminder for ``appointment``; send those due within the lookahead.

        Never raises: a rule, record or recipient that fails is logged and
        the rest carry on.
        """
        now = as_aware(now) if now else datetime.now(timezone.utc)
        report = ScheduleReport()
        if not appointment.id:
            _LOGGER.warning("[Reminder] %s: appointment has no id, nothing scheduled", owner)
            return report

        try:
            rules = await self.store.get_reminder_rules(owner)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("[Reminder] %s: could not load reminder rules: %s", owner, exc)
            return report

        wanted = {
            emp_id
            for rule in rules
            if rule.enabled and rule.recipient_type in ("employees", "both")
            for emp_id in rule.selected_employees
        }
        employees = []
        if wanted:
            try:
                employees = await self.store.fetch_employees(owner, wanted)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("[Reminder] %s: could not load employees: %s", owner, exc)

        horizon = now + self.lookahead
        for job in compute_schedule(appointment, rules, now, employees, self.tz):
            record = ScheduledReminder(
                owner=owner,
                appointment_id=appointment.id,
                rule=job.rule,
                recipient_class=job.recipient_class,
                recipients=job.recipients,
                message=job.message,
                trigger_time=job.trigger_time,
                created_at=now,
            )
            try:
                record.id = await self.store.insert_scheduled_reminder(record)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("[Reminder] %s: could not store reminder at %s: %s", owner, job.trigger_time, exc)
                continue
            report.persisted += 1

            if job.trigger_time < horizon:
                await self.claim_and_dispatch(record, report)

        _LOGGER.info(
            "[Reminder] %s/%s: %d stored, %d sent now (%d delivered, %d failed)",
            owner, appointment.id, report.persisted, report.dispatched, report.delivered, report.failed,
        )
        return report

    async def dispatch_due(self, now: Optional[datetime] = None, limit: int = settings.DUE_REMINDER_BATCH_SIZE) -> ScheduleReport:
        """Send every pending reminder whose trigger time has passed."""
        now = as_aware(now) if now else datetime.now(timezone.utc)
        report = ScheduleReport()
        for record in await self.store.fetch_due_reminders(now, limit):
            await self.claim_and_dispatch(record, report)
        return report
