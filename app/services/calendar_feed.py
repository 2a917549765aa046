"""Google Calendar feed adapter.

Reads public or shared calendars through the Calendar API v3 with an API key.
Events are handed on exactly as the feed encodes them; the matcher takes care
of the ``{"dateTime": ...}`` / ``{"date": ...}`` shapes.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from app.errors import ConfigurationError
from app.services.reconciliation import validate_feed_id
from app.types.calendar_contract import ExternalEvent
from config import settings

_LOGGER = logging.getLogger(__name__)

API_ROOT = "https://www.googleapis.com/calendar/v3/calendars"


class TransientFeedError(Exception):
    """Rate limiting or a 5xx from the calendar API; worth another attempt."""


RETRY_ERRORS = (requests.ConnectionError, requests.Timeout, TransientFeedError)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _to_event(item: Dict[str, Any], feed_id: str) -> ExternalEvent:
    return ExternalEvent(
        id=item.get("id"),
        summary=item.get("summary"),
        description=item.get("description"),
        start=item.get("start"),
        end=item.get("end"),
        feed_id=feed_id,
    )


class GoogleCalendarAdapter:
    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = settings.GOOGLE_CALENDAR_TIMEOUT,
        max_pages: int = settings.GOOGLE_CALENDAR_MAX_PAGES,
    ):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_CALENDAR_API_KEY
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_pages = max_pages

    def _events_url(self, feed_id: str) -> str:
        return f"{API_ROOT}/{quote(feed_id, safe='')}/events"

    @retry(
        wait=wait_random_exponential(multiplier=0.5, max=8),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(RETRY_ERRORS),
        reraise=True,
    )
    def _get_page(self, feed_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        resp = self.session.get(self._events_url(feed_id), params=params, timeout=self.timeout)
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientFeedError(f"{feed_id}: HTTP {resp.status_code}")
        resp.raise_for_status()
        return resp.json()

    def fetch_events_sync(
        self,
        feed_id: str,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
    ) -> List[ExternalEvent]:
        feed_id = validate_feed_id(feed_id)
        params: Dict[str, Any] = {"key": self.api_key, "singleEvents": "true", "maxResults": 250}
        if time_min:
            params["timeMin"] = _iso(time_min)
        if time_max:
            params["timeMax"] = _iso(time_max)

        events: List[ExternalEvent] = []
        for _ in range(self.max_pages):
            data = self._get_page(feed_id, params)
            for item in data.get("items", []):
                if item.get("status") == "cancelled":
                    continue
                events.append(_to_event(item, feed_id))
            token = data.get("nextPageToken")
            if not token:
                break
            params["pageToken"] = token
        else:
            _LOGGER.warning("[Feed] %s: stopped after %d pages", feed_id, self.max_pages)

        _LOGGER.debug("[Feed] %s: %d event(s)", feed_id, len(events))
        return events

    async def fetch_events(
        self,
        feed_id: str,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
    ) -> List[ExternalEvent]:
        return await asyncio.to_thread(self.fetch_events_sync, feed_id, time_min, time_max)

    def test_connection(self, feed_id: str) -> Dict[str, Any]:
        """Check that a calendar id can be read with the configured API key."""
        try:
            feed_id = validate_feed_id(feed_id)
        except ConfigurationError:
            return {"success": False, "error": "Invalid calendar ID format"}

        try:
            resp = self.session.get(
                self._events_url(feed_id),
                params={"key": self.api_key, "maxResults": 1},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            _LOGGER.warning("[Feed] connection test for %s failed: %s", feed_id, exc)
            return {"success": False, "error": "Network error while testing calendar connection"}

        if resp.ok:
            return {"success": True, "error": None}

        try:
            err = resp.json().get("error", {})
        except ValueError:
            err = {}
        status = err.get("status")
        if status == "PERMISSION_DENIED":
            message = "Calendar access denied. Please make sure the calendar is public or shared properly."
        elif status == "NOT_FOUND" or resp.status_code == 404:
            message = "Calendar not found. Please check the calendar ID."
        else:
            message = f"API Error: {err.get('message') or 'Unknown error'}"
        return {"success": False, "error": message}
