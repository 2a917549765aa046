import pytest
import requests
from tenacity import wait_none

from app.errors import ConfigurationError
from app.services.calendar_feed import API_ROOT, GoogleCalendarAdapter, TransientFeedError


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(GoogleCalendarAdapter._get_page.retry, "wait", wait_none())


def _item(event_id, status="confirmed"):
    return {
        "id": event_id,
        "status": status,
        "summary": f"Event {event_id}",
        "start": {"dateTime": "2025-03-10T10:00:00Z"},
        "end": {"dateTime": "2025-03-10T11:00:00Z"},
    }


def test_fetch_follows_pages_and_skips_cancelled():
    session = FakeSession(
        [
            FakeResponse(payload={"items": [_item("1"), _item("2", "cancelled")], "nextPageToken": "p2"}),
            FakeResponse(payload={"items": [_item("3")]}),
        ]
    )
    adapter = GoogleCalendarAdapter(api_key="k", session=session)

    events = adapter.fetch_events_sync("en.malaysia#holiday@group.v.calendar.google.com")

    assert [e.id for e in events] == ["1", "3"]
    assert events[0].start == {"dateTime": "2025-03-10T10:00:00Z"}
    assert events[0].feed_id == "en.malaysia#holiday@group.v.calendar.google.com"
    url, params = session.calls[0]
    assert url == f"{API_ROOT}/en.malaysia%23holiday%40group.v.calendar.google.com/events"
    assert params["key"] == "k"
    assert session.calls[1][1]["pageToken"] == "p2"


def test_fetch_stops_at_page_limit():
    page = {"items": [_item("1")], "nextPageToken": "again"}
    session = FakeSession([FakeResponse(payload=page), FakeResponse(payload=page)])
    adapter = GoogleCalendarAdapter(api_key="k", session=session, max_pages=2)

    assert len(adapter.fetch_events_sync("team@gmail.com")) == 2
    assert len(session.calls) == 2


def test_transient_errors_are_retried():
    session = FakeSession([FakeResponse(503), FakeResponse(payload={"items": [_item("1")]})])
    adapter = GoogleCalendarAdapter(api_key="k", session=session)

    assert [e.id for e in adapter.fetch_events_sync("team@gmail.com")] == ["1"]
    assert len(session.calls) == 2


def test_retries_give_up():
    session = FakeSession([FakeResponse(429), FakeResponse(500), FakeResponse(502)])
    adapter = GoogleCalendarAdapter(api_key="k", session=session)

    with pytest.raises(TransientFeedError):
        adapter.fetch_events_sync("team@gmail.com")
    assert len(session.calls) == 3


def test_invalid_feed_is_never_requested():
    session = FakeSession([])
    adapter = GoogleCalendarAdapter(api_key="k", session=session)

    with pytest.raises(ConfigurationError):
        adapter.fetch_events_sync("not a calendar")
    assert session.calls == []


@pytest.mark.asyncio
async def test_async_fetch():
    session = FakeSession([FakeResponse(payload={"items": [_item("1")]})])
    adapter = GoogleCalendarAdapter(api_key="k", session=session)

    events = await adapter.fetch_events("team@gmail.com")
    assert [e.display_title for e in events] == ["Event 1"]


@pytest.mark.parametrize(
    "response, expected",
    [
        (FakeResponse(200, {"items": []}), None),
        (
            FakeResponse(403, {"error": {"status": "PERMISSION_DENIED"}}),
            "Calendar access denied. Please make sure the calendar is public or shared properly.",
        ),
        (FakeResponse(404, {"error": {}}), "Calendar not found. Please check the calendar ID."),
        (FakeResponse(400, {"error": {"message": "Bad Request"}}), "API Error: Bad Request"),
        (requests.ConnectionError("offline"), "Network error while testing calendar connection"),
    ],
)
def test_connection_check(response, expected):
    adapter = GoogleCalendarAdapter(api_key="k", session=FakeSession([response]))
    result = adapter.test_connection("team@gmail.com")
    assert result["success"] is (expected is None)
    assert result["error"] == expected


def test_connection_check_rejects_bad_id():
    adapter = GoogleCalendarAdapter(api_key="k", session=FakeSession([]))
    assert adapter.test_connection("nope") == {"success": False, "error": "Invalid calendar ID format"}
