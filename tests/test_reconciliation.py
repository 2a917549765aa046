import asyncio

import pytest

from app.errors import ConfigurationError
from app.services.reconciliation import (
    ReconciliationSession,
    build_display_set,
    reconcile,
    refresh_feeds,
    validate_feed_id,
)
from app.types.calendar_contract import CalendarConfig, EventSource, ExternalEvent, Visibility

PRIMARY = "team@gmail.com"
HOLIDAYS = "en.malaysia#holiday@group.v.calendar.google.com"

DUPLICATE = ExternalEvent(
    id="g1",
    summary="Aircond Service",
    description="Call 0123456789",
    start={"dateTime": "2025-03-10T10:00:00Z"},
    end={"dateTime": "2025-03-10T11:00:00Z"},
)
OTHER = ExternalEvent(
    id="g2",
    summary="Dentist",
    start={"dateTime": "2025-03-10T10:00:00Z"},
    end={"dateTime": "2025-03-10T11:00:00Z"},
)
ALL_DAY = ExternalEvent(id="g3", summary="Public holiday", start={"date": "2025-03-31"}, end={"date": "2025-04-01"})


class FakeAdapter:
    def __init__(self, events_by_feed=None, failing=()):
        self.events_by_feed = events_by_feed or {}
        self.failing = set(failing)
        self.calls = []

    async def fetch_events(self, feed_id, time_min=None, time_max=None):
        self.calls.append(feed_id)
        if feed_id in self.failing:
            raise ConnectionError("feed down")
        return list(self.events_by_feed.get(feed_id, []))


class GatedAdapter:
    """Each call blocks until its gate is opened; the n-th call returns ``batches[n]``."""

    def __init__(self, batches):
        self.batches = batches
        self.gates = []

    async def fetch_events(self, feed_id, time_min=None, time_max=None):
        index = len(self.gates)
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return list(self.batches[index])


async def _wait_for_calls(adapter, count):
    while len(adapter.gates) < count:
        await asyncio.sleep(0)


def _visibility(classified):
    return {c.event.id: c.visibility for c in classified}


def test_fails_open_without_appointments():
    events = {PRIMARY: [DUPLICATE, OTHER]}
    for appointments in (None, []):
        classified = reconcile(appointments, events)
        assert [c.visibility for c in classified] == [Visibility.VISIBLE, Visibility.VISIBLE]


def test_duplicate_is_suppressed_others_kept(appointment):
    classified = reconcile([appointment], {PRIMARY: [DUPLICATE, OTHER]})
    assert _visibility(classified) == {"g1": Visibility.SUPPRESSED, "g2": Visibility.VISIBLE}
    assert all(c.source is EventSource.EXTERNAL for c in classified)
    assert all(c.feed_id == PRIMARY for c in classified)


def test_same_logic_on_every_feed(appointment):
    classified = reconcile([appointment], {PRIMARY: [DUPLICATE], HOLIDAYS: [DUPLICATE, ALL_DAY]})
    by_feed = [(c.feed_id, c.event.id, c.visibility) for c in classified]
    assert by_feed == [
        (PRIMARY, "g1", Visibility.SUPPRESSED),
        (HOLIDAYS, "g1", Visibility.SUPPRESSED),
        (HOLIDAYS, "g3", Visibility.VISIBLE),
    ]


def test_reconcile_does_not_touch_appointments(appointment):
    before = appointment.model_dump()
    reconcile([appointment], {PRIMARY: [DUPLICATE]})
    assert appointment.model_dump() == before


def test_display_set_tags_sources(appointment):
    classified = reconcile([appointment], {PRIMARY: [DUPLICATE, OTHER, ALL_DAY]})
    entries = build_display_set([appointment], classified)
    assert [e.source for e in entries] == [EventSource.OWN, EventSource.EXTERNAL, EventSource.EXTERNAL]
    assert [e.title for e in entries] == [appointment.title, "Dentist", "Public holiday"]
    assert entries[2].start.isoformat() == "2025-03-31T00:00:00+00:00"


def test_validate_feed_id():
    assert validate_feed_id("  team@gmail.com ") == PRIMARY
    assert validate_feed_id(HOLIDAYS) == HOLIDAYS
    assert validate_feed_id("abc123@calendar.google.com")
    with pytest.raises(ConfigurationError):
        validate_feed_id("not a calendar")
    with pytest.raises(ConfigurationError):
        validate_feed_id("someone@example.com")


@pytest.mark.asyncio
async def test_refresh_skips_invalid_and_failing_feeds():
    adapter = FakeAdapter({PRIMARY: [OTHER], HOLIDAYS: [ALL_DAY]}, failing={"broken@gmail.com"})
    config = CalendarConfig(
        calendar_id=PRIMARY,
        additional_calendar_ids=["not-a-calendar", "", "broken@gmail.com", HOLIDAYS, PRIMARY],
    )
    events = await refresh_feeds("owner-1", config, adapter)

    assert set(events) == {PRIMARY, HOLIDAYS}
    assert adapter.calls == [PRIMARY, "broken@gmail.com", HOLIDAYS]
    assert [e.id for e in events[HOLIDAYS]] == ["g3"]


@pytest.mark.asyncio
async def test_session_uses_newest_appointments(appointment):
    adapter = GatedAdapter([[DUPLICATE, OTHER]])
    session = ReconciliationSession("owner-1", adapter)
    session.load_appointments([])

    task = asyncio.create_task(session.refresh(CalendarConfig(calendar_id=PRIMARY)))
    await _wait_for_calls(adapter, 1)
    session.load_appointments([appointment])
    adapter.gates[0].set()
    classified = await task

    assert _visibility(classified) == {"g1": Visibility.SUPPRESSED, "g2": Visibility.VISIBLE}


@pytest.mark.asyncio
async def test_stale_refresh_does_not_overwrite(appointment):
    adapter = GatedAdapter([[DUPLICATE], [DUPLICATE, OTHER]])
    session = ReconciliationSession("owner-1", adapter)
    config = CalendarConfig(calendar_id=PRIMARY)
    session.load_appointments([appointment])

    first = asyncio.create_task(session.refresh(config))
    await _wait_for_calls(adapter, 1)
    second = asyncio.create_task(session.refresh(config))
    await _wait_for_calls(adapter, 2)

    adapter.gates[1].set()
    await second
    adapter.gates[0].set()
    await first

    assert [c.event.id for c in session.classified] == ["g1", "g2"]
    assert [e.source for e in session.display_set()] == [EventSource.OWN, EventSource.EXTERNAL]


@pytest.mark.asyncio
async def test_display_set_follows_appointments_loaded_after_refresh(appointment):
    adapter = FakeAdapter({PRIMARY: [DUPLICATE, OTHER]})
    session = ReconciliationSession("owner-1", adapter)
    session.load_appointments([])
    await session.refresh(CalendarConfig(calendar_id=PRIMARY))
    assert [e.title for e in session.display_set()] == ["Aircond Service", "Dentist"]

    session.load_appointments([appointment])
    entries = session.display_set()

    assert [(e.source, e.title) for e in entries] == [
        (EventSource.OWN, appointment.title),
        (EventSource.EXTERNAL, "Dentist"),
    ]
    assert _visibility(session.classified) == {"g1": Visibility.SUPPRESSED, "g2": Visibility.VISIBLE}
    assert adapter.calls == [PRIMARY]
