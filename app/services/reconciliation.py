"""
Event reconciliation: hide external calendar events that duplicate one of our
own appointments.

Every run is computed from scratch from the appointments and feed events it is
given; nothing persisted is modified.
When our appointments are not loaded yet the filter fails open and shows every
external event.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from app.errors import ConfigurationError, ValidationError
from app.services.matcher import is_duplicate
from app.types.calendar_contract import (
    Appointment,
    CalendarConfig,
    ClassifiedEvent,
    DisplayEntry,
    EventSource,
    ExternalEvent,
    Visibility,
    coerce_event_time,
)

_LOGGER = logging.getLogger(__name__)

FEED_ID_PATTERN = re.compile(r"^[\w.-]+#?[\w.-]*@((group\.(v\.)?)?calendar\.google\.com|gmail\.com)$")


class CalendarAdapter(Protocol):
    async def fetch_events(
        self, feed_id: str, time_min: Optional[datetime] = None, time_max: Optional[datetime] = None
    ) -> List[ExternalEvent]:
        ...


def validate_feed_id(feed_id: str) -> str:
    """Return the trimmed id or raise ``ConfigurationError``."""
    cleaned = (feed_id or "").strip()
    if not FEED_ID_PATTERN.match(cleaned):
        raise ConfigurationError(feed_id)
    return cleaned


def classify_event(event: ExternalEvent, appointments: Iterable[Appointment]) -> Visibility:
    """Suppressed as soon as any appointment matches; first match wins."""
    for appointment in appointments:
        if is_duplicate(appointment, event):
            return Visibility.SUPPRESSED
    return Visibility.VISIBLE


def reconcile(
    canonical_appointments: Optional[Sequence[Appointment]],
    external_events_by_feed: Mapping[str, Iterable[ExternalEvent]],
) -> List[ClassifiedEvent]:
    """Classify every external event of every feed as visible or suppressed."""
    appointments = canonical_appointments or ()
    if not appointments:
        _LOGGER.info("[Reconcile] no appointments loaded, showing all external events")

    classified: List[ClassifiedEvent] = []
    for feed_id, events in external_events_by_feed.items():
        suppressed = 0
        for event in events:
            visibility = classify_event(event, appointments) if appointments else Visibility.VISIBLE
            if visibility is Visibility.SUPPRESSED:
                suppressed += 1
            classified.append(ClassifiedEvent(event=event, feed_id=feed_id, visibility=visibility))
        if suppressed:
            _LOGGER.debug("[Reconcile] %s: %d duplicate event(s) suppressed", feed_id, suppressed)
    return classified


def build_display_set(
    appointments: Optional[Sequence[Appointment]],
    classified: Iterable[ClassifiedEvent],
) -> List[DisplayEntry]:
    """Our appointments tagged ``own`` followed by the visible external events."""
    entries = [
        DisplayEntry(source=EventSource.OWN, title=a.title, start=a.start, end=a.end, appointment=a)
        for a in appointments or ()
    ]
    for item in classified:
        if item.visibility is not Visibility.VISIBLE:
            continue
        try:
            start = coerce_event_time(item.event.start)
            end = coerce_event_time(item.event.end)
        except ValidationError:
            start = end = None
        entries.append(
            DisplayEntry(
                source=item.source,
                title=item.event.display_title,
                start=start,
                end=end,
                feed_id=item.feed_id,
                event=item.event,
            )
        )
    return entries


async def refresh_feeds(
    owner: str,
    config: CalendarConfig,
    adapter: CalendarAdapter,
    time_min: Optional[datetime] = None,
    time_max: Optional[datetime] = None,
) -> Dict[str, List[ExternalEvent]]:
    """Fetch every configured feed concurrently.

    Blank ids are ignored, invalid ids are skipped, and a feed whose fetch
    fails is left out; none of these affect the other feeds.
    """
    feed_ids: List[str] = []
    for raw in config.feed_ids():
        if not raw or not raw.strip():
            continue
        try:
            feed_id = validate_feed_id(raw)
        except ConfigurationError as exc:
            _LOGGER.warning("[Reconcile] %s: skipping feed: %s", owner, exc)
            continue
        if feed_id not in feed_ids:
            feed_ids.append(feed_id)

    results = await asyncio.gather(
        *(adapter.fetch_events(f, time_min, time_max) for f in feed_ids),
        return_exceptions=True,
    )

    events_by_feed: Dict[str, List[ExternalEvent]] = {}
    for feed_id, result in zip(feed_ids, results):
        if isinstance(result, BaseException):
            _LOGGER.warning("[Reconcile] %s: feed %s unavailable: %s", owner, feed_id, result)
            continue
        events_by_feed[feed_id] = list(result)
    return events_by_feed


class ReconciliationSession:
    """Keeps one owner's calendar view consistent across overlapping refreshes.

    Each ``load_appointments`` call bumps a generation counter. A refresh
    reconciles against whatever set is newest when its feeds come back, and
    its result is only published if no result from a newer appointment set
    (or a later refresh of the same set) has been published already.
    """

    def __init__(self, owner: str, adapter: CalendarAdapter):
        self.owner = owner
        self.adapter = adapter
        self._appointments: Optional[List[Appointment]] = None
        self._generation = 0
        self._refresh_seq = 0
        self._published_key: Tuple[int, int] = (-1, -1)
        self._published: List[ClassifiedEvent] = []
        self._events_by_feed: Optional[Dict[str, List[ExternalEvent]]] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def classified(self) -> List[ClassifiedEvent]:
        return list(self._published)

    def load_appointments(self, appointments: Optional[Sequence[Appointment]]) -> int:
        self._appointments = list(appointments) if appointments is not None else None
        self._generation += 1
        return self._generation

    def publish(self, key: Tuple[int, int], classified: List[ClassifiedEvent]) -> bool:
        if key < self._published_key:
            _LOGGER.debug("[Reconcile] %s: dropping stale result %s < %s", self.owner, key, self._published_key)
            return False
        self._published_key = key
        self._published = classified
        return True

    async def refresh(
        self,
        config: CalendarConfig,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
    ) -> List[ClassifiedEvent]:
        self._refresh_seq += 1
        seq = self._refresh_seq
        events_by_feed = await refresh_feeds(self.owner, config, self.adapter, time_min, time_max)

        # read after the await so the newest appointment set is used
        generation = self._generation
        classified = reconcile(self._appointments, events_by_feed)
        if self.publish((generation, seq), classified):
            self._events_by_feed = events_by_feed
        return self.classified

    def display_set(self) -> List[DisplayEntry]:
        """Current appointments plus the visible events of the last published refresh.

        If appointments were loaded after that refresh, its feed events are
        reclassified against them first.
        """
        generation, seq = self._published_key
        if self._events_by_feed is not None and generation != self._generation:
            self.publish((self._generation, seq), reconcile(self._appointments, self._events_by_feed))
        return build_display_set(self._appointments, self._published)
