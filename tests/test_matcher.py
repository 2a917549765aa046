from datetime import timedelta

from app.services import matcher
from app.services.matcher import explain_match, is_duplicate
from app.types.calendar_contract import Appointment, Contact, ExternalEvent
from app.utils.phone import names_match, phones_match
from conftest import utc


def _event(summary, description=None, start="2025-03-10T10:00:00Z", end="2025-03-10T11:00:00Z"):
    return ExternalEvent(summary=summary, description=description, start=start, end=end)


def test_phone_match_tolerates_country_code(appointment):
    event = _event("Aircond Service", "Call 0123456789 on arrival")
    result = explain_match(appointment, event)
    assert result.overlap and result.phone_match
    assert is_duplicate(appointment, event)


def test_nested_google_times_are_understood(appointment):
    event = _event(
        "Aircond Service",
        "Call 0123456789",
        start={"dateTime": "2025-03-10T18:20:00+08:00"},
        end={"dateTime": "2025-03-10T19:00:00+08:00"},
    )
    assert is_duplicate(appointment, event)


def test_overlap_is_required(appointment):
    assert not is_duplicate(appointment, _event("Call 0123456789", start="2025-03-10T12:00:00Z"))
    assert not is_duplicate(appointment, _event("Call 0123456789", end="2025-03-10T12:30:00Z"))


def test_tolerance_boundary_is_inclusive(appointment):
    event = _event("Call 0123456789", start="2025-03-10T11:00:00Z", end="2025-03-10T12:00:00Z")
    assert is_duplicate(appointment, event)
    assert not is_duplicate(appointment, event, tolerance=timedelta(minutes=59))


def test_missing_or_malformed_dates_never_match(appointment):
    assert not is_duplicate(appointment, _event("Call 0123456789", start=None))
    assert not is_duplicate(appointment, _event("Call 0123456789", end="next tuesday"))
    assert not is_duplicate(appointment, _event("Call 0123456789", start={"timeZone": "UTC"}))


def test_name_fallback_when_phones_differ(appointment):
    event = _event("Haircut - Siti Aminah +60199999999")
    result = explain_match(appointment, event)
    assert result.overlap
    assert not result.phone_match
    assert result.name_match
    assert result.duplicate


def test_unrelated_event_in_same_slot_is_kept(appointment):
    event = _event("Team standup", "Dial-in +60 3-2222 1111")
    result = explain_match(appointment, event)
    assert result.overlap
    assert not result.duplicate


def test_short_names_match_as_substrings():
    # known looseness of substring matching
    appt = Appointment(
        title="Ali",
        start=utc(2025, 3, 10, 10),
        end=utc(2025, 3, 10, 11),
        contacts=[Contact(name="Ali")],
    )
    assert is_duplicate(appt, _event("Meeting - Alison"))


def test_formatted_phone_in_description(appointment):
    event = _event("Aircond", "Tel: +60 12-345 6789")
    assert explain_match(appointment, event).phone_match


def test_strategies_are_pluggable(appointment):
    event = _event("Aircond", "Call 0123456789")
    assert is_duplicate(appointment, event)
    assert not is_duplicate(appointment, event, phone_strategies=(), name_strategies=())


# ──────────────────────────────
# Individual strategies
# ──────────────────────────────


def test_country_phone_strategy():
    extract = matcher.country_phone_strategy("60")
    assert extract("call +60123456789 or 0198765432") == ["+60123456789", "0198765432"]
    assert extract("ref 1234") == []


def test_international_phones():
    assert matcher.international_phones("reach me at +447911123456") == ["+447911123456"]


def test_formatted_phones_need_eight_digits():
    assert matcher.formatted_phones("Tel: +60 12-345 6789") == ["+60 12-345 6789"]
    assert matcher.formatted_phones("room 1-23-45") == []


def test_name_strategies():
    assert matcher.name_after_last_dash("Cleaning - Deep - John Doe +60123456789") == ["John Doe"]
    assert matcher.name_after_last_dash("No dash here") == []
    assert matcher.contact_label_with_details("Contact: John Doe (+60123456789)") == ["John Doe"]
    assert matcher.contact_label("Contact: John Doe") == ["John Doe"]
    assert matcher.name_after_trailing_dash("Consultation - Mary Jane") == ["Mary Jane"]
    assert matcher.name_before_phone("John Doe +60123456789") == ["John Doe"]


def test_phone_and_name_helpers():
    assert phones_match("60123456789", "0123456789")
    assert phones_match("+60 12-345 6789", "0123456789")
    assert not phones_match("1234567", "1234567")
    assert not phones_match("", "0123456789")
    assert names_match("Siti", "siti aminah")
    assert not names_match("", "siti")
