"""
Reminder rule engine.

Turns an appointment plus the owner's reminder rules into concrete dispatch
jobs: one per rule and recipient class, each with its trigger time, resolved
recipients and rendered message. Nothing here performs I/O.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from app.errors import ValidationError
from app.types.calendar_contract import (
    Appointment,
    DispatchJob,
    Employee,
    Recipient,
    RecipientClass,
    ReminderRule,
    as_aware,
)
from config import settings

_LOGGER = logging.getLogger(__name__)

_UNIT_TO_KWARG: Dict[str, str] = {"minutes": "minutes", "hours": "hours", "days": "days"}


def default_rules() -> List[ReminderRule]:
    """Rules seeded for an owner who has never configured reminders."""
    return [
        ReminderRule(
            amount=1,
            unit="days",
            direction="before",
            recipient_type="both",
            message="Reminder: you have an appointment tomorrow.",
        ),
        ReminderRule(
            amount=2,
            unit="hours",
            direction="before",
            recipient_type="both",
            message="Reminder: your appointment starts in 2 hours.",
        ),
    ]


def rule_offset(rule: ReminderRule) -> timedelta:
    kwarg = _UNIT_TO_KWARG.get(rule.unit)
    if kwarg is None or rule.amount is None or rule.amount < 0:
        raise ValidationError(f"unusable reminder offset {rule.amount!r} {rule.unit!r}")
    return timedelta(**{kwarg: rule.amount})


def compute_trigger_time(start: datetime, rule: ReminderRule) -> datetime:
    """``start`` shifted by the rule offset, earlier for "before" rules."""
    offset = rule_offset(rule)
    if rule.direction == "before":
        return start - offset
    if rule.direction == "after":
        return start + offset
    raise ValidationError(f"unknown reminder direction {rule.direction!r}")


def expand_rule(rule: ReminderRule) -> List[RecipientClass]:
    """The recipient classes one rule fans out to; "both" gives two."""
    if rule.recipient_type == "both":
        return ["contacts", "employees"]
    if rule.recipient_type in ("contacts", "employees"):
        return [rule.recipient_type]
    raise ValidationError(f"unknown recipient type {rule.recipient_type!r}")


def resolve_recipients(
    recipient_class: RecipientClass,
    appointment: Appointment,
    rule: ReminderRule,
    employees: Iterable[Employee] = (),
) -> List[Recipient]:
    if recipient_class == "contacts":
        return [
            Recipient(id=c.id, name=c.name, phone=c.phone)
            for c in appointment.contacts
            if c.id or c.phone
        ]
    wanted = set(rule.selected_employees)
    return [
        Recipient(id=e.id, name=e.name, phone=e.phone_number)
        for e in employees
        if e.id in wanted and e.phone_number
    ]


# ──────────────────────────────────────────────────────────────────────────
# Rendering
# ──────────────────────────────────────────────────────────────────────────

class _KeepUnknown(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def _display_zone(tz: Optional[str]) -> ZoneInfo:
    return ZoneInfo(tz or settings.DEFAULT_TIMEZONE)


def format_date(value: datetime, tz: Optional[str] = None) -> str:
    return value.astimezone(_display_zone(tz)).strftime("%B %d, %Y")


def format_time(value: datetime, tz: Optional[str] = None) -> str:
    return value.astimezone(_display_zone(tz)).strftime("%I:%M %p").lstrip("0")


def render_message(template: str, appointment: Appointment, tz: Optional[str] = None) -> str:
    """Fill placeholders and append the date, time and meeting link."""
    date_str = format_date(appointment.start, tz)
    time_str = format_time(appointment.start, tz)
    values = _KeepUnknown(
        title=appointment.title,
        date=date_str,
        time=time_str,
        meeting_link=appointment.meeting_link or "",
    )
    try:
        body = template.format_map(values)
    except (ValueError, IndexError, AttributeError):
        body = template

    text = f"{body}\n\n📅 Date: {date_str}\n⏰ Time: {time_str}\n"
    if appointment.meeting_link:
        text += f"\n🎥 Join Meeting: {appointment.meeting_link}"
    return text


def wrap_for(recipient_class: RecipientClass, body: str, appointment: Appointment) -> str:
    """Frame the shared body for clients or for staff."""
    if recipient_class == "employees":
        clients = ", ".join(c.name for c in appointment.contacts if c.name) or "-"
        return f"*Staff Reminder*\n📌 {appointment.title}\n👤 Client: {clients}\n\n{body}"
    return f"*Appointment Reminder*\n\n{body}"


# ──────────────────────────────────────────────────────────────────────────
# Schedule
# ──────────────────────────────────────────────────────────────────────────

def compute_schedule(
    appointment: Appointment,
    rules: Sequence[ReminderRule],
    now: datetime,
    employees: Iterable[Employee] = (),
    tz: Optional[str] = None,
) -> List[DispatchJob]:
    """Dispatch jobs for every enabled rule whose trigger is not in the past."""
    now = as_aware(now)
    staff = list(employees)
    jobs: List[DispatchJob] = []
    for index, rule in enumerate(rules):
        if not rule.enabled:
            continue
        try:
            trigger_time = compute_trigger_time(appointment.start, rule)
            classes = expand_rule(rule)
        except (ValidationError, OverflowError) as exc:
            _LOGGER.warning("[Reminder] skipping rule %d for %s: %s", index, appointment.id, exc)
            continue

        if trigger_time < now:
            _LOGGER.debug("[Reminder] rule %d for %s is in the past (%s)", index, appointment.id, trigger_time)
            continue

        body = render_message(rule.message, appointment, tz)
        for recipient_class in classes:
            jobs.append(
                DispatchJob(
                    rule=rule,
                    trigger_time=trigger_time,
                    recipient_class=recipient_class,
                    recipients=resolve_recipients(recipient_class, appointment, rule, staff),
                    message=wrap_for(recipient_class, body, appointment),
                )
            )
    return jobs
