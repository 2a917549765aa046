"""Pydantic models shared by the reconciliation filter, the reminder engine
and the rest of the backend.

These classes are intentionally framework-agnostic so they can be reused by
workers, API responses, and tests without pulling in FastAPI or database
layers. Field aliases accept the camelCase payloads produced by the calendar
front end (``startTime``, ``meetLink``, ``timeUnit`` ...).
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from app.errors import ValidationError

TimeUnit = Literal["minutes", "hours", "days"]
Direction = Literal["before", "after"]
RecipientType = Literal["contacts", "employees", "both"]
RecipientClass = Literal["contacts", "employees"]


def as_aware(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def coerce_event_time(value: Any) -> datetime:
    """Turn any of the encodings a calendar feed uses into an aware datetime.

    Accepted: ``datetime``, ``date`` (all-day, midnight UTC), ISO-8601
    strings, epoch milliseconds, and the nested ``{"dateTime": ...}`` /
    ``{"date": ...}`` objects of the Google Calendar API.

    Raises ``ValidationError`` for anything else.
    """
    if isinstance(value, dict):
        nested = value.get("dateTime") or value.get("date")
        if nested is None:
            raise ValidationError(f"no dateTime/date in {value!r}")
        return coerce_event_time(nested)
    if isinstance(value, datetime):
        return as_aware(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise ValidationError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValidationError(f"epoch out of range: {value!r}") from exc
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return as_aware(datetime.fromisoformat(text))
        except ValueError as exc:
            raise ValidationError(f"unparseable timestamp {value!r}") from exc
    raise ValidationError(f"missing or unsupported timestamp {value!r}")


# ──────────────────────────────
# Canonical appointments
# ──────────────────────────────


class Contact(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "contact_id", "contactId"))
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "contactName"))
    phone: Optional[str] = None


class Employee(BaseModel):
    """Staff directory entry used to resolve "employees" reminder recipients."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, validation_alias=AliasChoices("phone_number", "phoneNumber"))


class Appointment(BaseModel):
    """One canonical appointment owned by this system."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    owner: Optional[str] = None
    title: str = ""
    start: datetime = Field(validation_alias=AliasChoices("start", "startTime"))
    end: datetime = Field(validation_alias=AliasChoices("end", "endTime"))
    status: str = Field(default="new", validation_alias=AliasChoices("status", "appointmentStatus"))
    type: Optional[str] = None
    staff: List[str] = Field(default_factory=list)
    contacts: List[Contact] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    meeting_link: Optional[str] = Field(default=None, validation_alias=AliasChoices("meeting_link", "meetLink"))
    notification_sent: bool = Field(default=False, validation_alias=AliasChoices("notification_sent", "notificationSent"))
    color: Optional[str] = None
    details: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("start", "end")
    def _aware(cls, v: datetime):  # noqa: N805
        return as_aware(v)


# ──────────────────────────────
# External calendar feeds
# ──────────────────────────────


class ExternalEvent(BaseModel):
    """Read-only view of one event pulled from a third-party calendar feed.

    ``start``/``end`` are kept exactly as the feed delivered them; use
    ``coerce_event_time`` to interpret them.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    start: Any = None
    end: Any = None
    feed_id: Optional[str] = None

    @property
    def display_title(self) -> str:
        return self.title or self.summary or ""


class Visibility(str, Enum):
    VISIBLE = "visible"
    SUPPRESSED = "suppressed"


class EventSource(str, Enum):
    OWN = "own"
    EXTERNAL = "external"


class ClassifiedEvent(BaseModel):
    event: ExternalEvent
    feed_id: str
    visibility: Visibility
    source: EventSource = EventSource.EXTERNAL


class DisplayEntry(BaseModel):
    """One row of the deduplicated display set handed to the renderer."""

    source: EventSource
    title: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    feed_id: Optional[str] = None
    appointment: Optional[Appointment] = None
    event: Optional[ExternalEvent] = None


class CalendarConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    calendar_id: str = Field(default="", validation_alias=AliasChoices("calendar_id", "calendarId"))
    additional_calendar_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("additional_calendar_ids", "additionalCalendarIds"),
    )

    def feed_ids(self) -> List[str]:
        """Primary feed first, then the additional ones, in configured order."""
        return [self.calendar_id, *self.additional_calendar_ids]


# ──────────────────────────────
# Reminders
# ──────────────────────────────


class ReminderRule(BaseModel):
    """When, and to whom, a reminder fires relative to an appointment start."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: bool = True
    amount: int = Field(ge=0, validation_alias=AliasChoices("amount", "time"))
    unit: TimeUnit = Field(validation_alias=AliasChoices("unit", "timeUnit"))
    direction: Direction = Field(validation_alias=AliasChoices("direction", "type"))
    recipient_type: RecipientType = Field(
        default="contacts", validation_alias=AliasChoices("recipient_type", "recipientType")
    )
    selected_employees: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("selected_employees", "selectedEmployees")
    )
    message: str = ""


class Recipient(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None

    @property
    def address(self) -> str:
        return self.phone or self.id or ""


class DispatchJob(BaseModel):
    """One concrete send batch: a rule expanded for a single recipient class."""

    rule: ReminderRule
    trigger_time: datetime
    recipient_class: RecipientClass
    recipients: List[Recipient] = Field(default_factory=list)
    message: str


class ScheduledReminder(BaseModel):
    """Durable record of a computed reminder; Pending until processed."""

    id: Optional[str] = None
    owner: str
    appointment_id: str
    rule: ReminderRule
    recipient_class: RecipientClass
    recipients: List[Recipient] = Field(default_factory=list)
    message: str
    trigger_time: datetime
    processed: bool = False
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @field_validator("trigger_time")
    def _aware(cls, v: datetime):  # noqa: N805
        return as_aware(v)


class ScheduleReport(BaseModel):
    persisted: int = 0
    dispatched: int = 0
    delivered: int = 0
    failed: int = 0
    skipped_claims: int = 0
