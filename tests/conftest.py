from datetime import datetime, timezone

import pytest

from app.services.reminder_rules import default_rules
from app.types.calendar_contract import Appointment, CalendarConfig, Contact


class MemoryStore:
    """In-memory stand-in for the ``db`` package used by the services."""

    def __init__(self, rules=None, employees=(), config=None):
        self.rules = rules
        self.employees = list(employees)
        self.config = config or CalendarConfig()
        self.appointments = {}
        self.reminders = {}
        self.marked = []

    # appointments
    async def read_appointments(self, owner, start=None, end=None):
        return [a for a in self.appointments.values() if a.owner == owner]

    async def create_appointment(self, owner, appointment):
        new_id = f"a{len(self.appointments) + 1}"
        saved = appointment.model_copy(update={"id": new_id, "owner": owner})
        self.appointments[new_id] = saved
        return saved

    async def update_appointment(self, owner, appointment_id, patch):
        current = self.appointments.get(appointment_id)
        if current is None or current.owner != owner:
            return None
        merged = {**current.model_dump(), **patch}
        saved = Appointment.model_validate(merged)
        self.appointments[appointment_id] = saved
        return saved

    async def delete_appointment(self, owner, appointment_id):
        return self.appointments.pop(appointment_id, None) is not None

    async def get_calendar_config(self, owner):
        return self.config

    # reminder settings / staff
    async def get_reminder_rules(self, owner):
        return list(self.rules) if self.rules is not None else default_rules()

    async def fetch_employees(self, owner, ids=None):
        return [e for e in self.employees if ids is None or e.id in ids]

    # scheduled reminders
    async def insert_scheduled_reminder(self, reminder):
        rid = f"r{len(self.reminders) + 1}"
        self.reminders[rid] = reminder.model_copy(update={"id": rid})
        return rid

    async def claim_scheduled_reminder(self, reminder_id):
        record = self.reminders.get(reminder_id)
        if record is None or record.processed:
            return False
        record.processed = True
        return True

    async def mark_reminder_processed(self, appointment_id, trigger_time, recipient_class=None):
        self.marked.append((appointment_id, trigger_time, recipient_class))
        count = 0
        for record in self.reminders.values():
            if record.appointment_id != appointment_id or record.trigger_time != trigger_time:
                continue
            if recipient_class and record.recipient_class != recipient_class:
                continue
            record.processed = True
            count += 1
        return count

    async def fetch_due_reminders(self, now=None, limit=100):
        due = [r for r in self.reminders.values() if not r.processed and r.trigger_time <= now]
        return sorted(due, key=lambda r: r.trigger_time)[:limit]


class RecordingSender:
    """Fake notification gateway; numbers in ``fail`` raise, in ``refuse`` return False."""

    def __init__(self, fail=(), refuse=()):
        self.fail = set(fail)
        self.refuse = set(refuse)
        self.sent = []

    async def __call__(self, recipient, message, context):
        if recipient.phone in self.fail:
            raise RuntimeError("gateway timeout")
        if recipient.phone in self.refuse:
            return False
        self.sent.append((recipient.phone, message, dict(context)))
        return True


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def appointment():
    return Appointment(
        id="a1",
        owner="owner-1",
        title="Aircond Service - Siti +60123456789",
        start=utc(2025, 3, 10, 10, 0),
        end=utc(2025, 3, 10, 11, 0),
        contacts=[Contact(id="c1", name="Siti Aminah", phone="60123456789")],
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sender():
    return RecordingSender()
