"""
Fuzzy matcher deciding whether an external calendar event is the same
real-world appointment as one of our canonical appointments.

An event duplicates an appointment when both its start and end lie within the
tolerance window of the appointment's, and it shares a phone number or, failing
that, a name with it. Phone numbers and names are pulled out of free text by
ordered lists of extraction strategies; each strategy is a pure
``(text) -> list[str]`` function so new feed conventions can be added without
touching the comparison logic.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterable, List, Sequence

from app.errors import ValidationError
from app.types.calendar_contract import Appointment, ExternalEvent, coerce_event_time
from app.utils.phone import names_match, phones_match, unique_names, unique_phones
from config import settings

_LOGGER = logging.getLogger(__name__)

Strategy = Callable[[str], List[str]]

DEFAULT_TOLERANCE = timedelta(minutes=settings.MATCH_TOLERANCE_MINUTES)

# "Jane Doe +60123456789" -> trailing phone token
_TRAILING_PHONE = re.compile(r"\s*\+?\d[\d\s\-().]{6,}\d\s*$")


# ──────────────────────────────────────────────────────────────────────────
# Phone extraction strategies
# ──────────────────────────────────────────────────────────────────────────

def country_phone_strategy(country_code: str) -> Strategy:
    """Numbers written with the given country code, or in local 0-prefixed form."""
    pattern = re.compile(rf"(?<![\d+])(?:\+?{re.escape(country_code)}|0)\d{{8,10}}(?!\d)")

    def _extract(text: str) -> List[str]:
        return pattern.findall(text or "")

    _extract.__name__ = f"country_phone_{country_code}"
    return _extract


_INTERNATIONAL = re.compile(r"(?<![\d+])\+?\d{10,15}(?!\d)")


def international_phones(text: str) -> List[str]:
    return _INTERNATIONAL.findall(text or "")


_FORMATTED = re.compile(r"(?<![\d+])\+?\d{1,4}(?:[ .\-()]+\d{2,5}){2,5}(?!\d)")


def formatted_phones(text: str) -> List[str]:
    """Numbers broken up by spaces, dots, dashes or brackets."""
    found = []
    for match in _FORMATTED.findall(text or ""):
        if sum(ch.isdigit() for ch in match) >= 8:
            found.append(match)
    return found


PHONE_STRATEGIES: Sequence[Strategy] = (
    country_phone_strategy(settings.DEFAULT_COUNTRY_CODE),
    international_phones,
    formatted_phones,
)


# ──────────────────────────────────────────────────────────────────────────
# Name extraction strategies
# ──────────────────────────────────────────────────────────────────────────

def name_after_last_dash(text: str) -> List[str]:
    """Our own export convention: "<service> - <client name>"."""
    if " - " not in (text or ""):
        return []
    tail = text.rsplit(" - ", 1)[1]
    return [_TRAILING_PHONE.sub("", tail)]


_CONTACT_WITH_PAREN = re.compile(r"Contact:\s*([^(\n]+?)\s*\(", re.IGNORECASE)
_CONTACT_LABEL = re.compile(r"Contact:\s*([^\n(,;|]+)", re.IGNORECASE)
_DASH_AT_END = re.compile(r"-\s*([A-Za-z][A-Za-z .'\-]*?)\s*$")
_NAME_BEFORE_PHONE = re.compile(r"^\s*([A-Za-z][A-Za-z .']*?)\s*(?=\+|\d)", re.MULTILINE)


def contact_label_with_details(text: str) -> List[str]:
    return _CONTACT_WITH_PAREN.findall(text or "")


def contact_label(text: str) -> List[str]:
    return _CONTACT_LABEL.findall(text or "")


def name_after_trailing_dash(text: str) -> List[str]:
    return _DASH_AT_END.findall(text or "")


def name_before_phone(text: str) -> List[str]:
    return _NAME_BEFORE_PHONE.findall(text or "")


NAME_STRATEGIES: Sequence[Strategy] = (
    contact_label_with_details,
    contact_label,
    name_after_trailing_dash,
    name_before_phone,
)


def _run(strategies: Iterable[Strategy], texts: Iterable[str]) -> List[str]:
    found: List[str] = []
    for strategy in strategies:
        for text in texts:
            if text:
                found.extend(strategy(text))
    return found


# ──────────────────────────────────────────────────────────────────────────
# Candidate collection
# ──────────────────────────────────────────────────────────────────────────

def appointment_phones(appointment: Appointment) -> List[str]:
    raw = [c.phone or c.id for c in appointment.contacts]
    token = _TRAILING_PHONE.search(appointment.title or "")
    if token:
        raw.append(token.group(0))
    return unique_phones(raw)


def appointment_names(appointment: Appointment) -> List[str]:
    raw = [c.name for c in appointment.contacts]
    raw.append(_TRAILING_PHONE.sub("", appointment.title or ""))
    return unique_names(raw)


def event_phones(event: ExternalEvent, strategies: Sequence[Strategy] = PHONE_STRATEGIES) -> List[str]:
    return unique_phones(_run(strategies, (event.display_title, event.description or "")))


def event_names(event: ExternalEvent, strategies: Sequence[Strategy] = NAME_STRATEGIES) -> List[str]:
    title = event.display_title
    raw = name_after_last_dash(title)
    raw.extend(_run(strategies, (title, event.description or "")))
    return unique_names(raw)


# ──────────────────────────────────────────────────────────────────────────
# Verdicts
# ──────────────────────────────────────────────────────────────────────────

def times_overlap(appointment: Appointment, event: ExternalEvent, tolerance: timedelta = DEFAULT_TOLERANCE) -> bool:
    """Start and end each within ``tolerance``; bad or missing dates never overlap."""
    try:
        start = coerce_event_time(event.start)
        end = coerce_event_time(event.end)
    except ValidationError as exc:
        _LOGGER.debug("[Match] unusable event time on %r: %s", event.display_title, exc)
        return False
    return abs(appointment.start - start) <= tolerance and abs(appointment.end - end) <= tolerance


@dataclass(frozen=True)
class MatchResult:
    overlap: bool
    phone_match: bool = False
    name_match: bool = False

    @property
    def duplicate(self) -> bool:
        return self.overlap and (self.phone_match or self.name_match)


def explain_match(
    appointment: Appointment,
    event: ExternalEvent,
    tolerance: timedelta = DEFAULT_TOLERANCE,
    phone_strategies: Sequence[Strategy] = PHONE_STRATEGIES,
    name_strategies: Sequence[Strategy] = NAME_STRATEGIES,
) -> MatchResult:
    if not times_overlap(appointment, event, tolerance):
        return MatchResult(overlap=False)

    ours = appointment_phones(appointment)
    theirs = event_phones(event, phone_strategies)
    if any(phones_match(a, b) for a in ours for b in theirs):
        return MatchResult(overlap=True, phone_match=True)

    our_names = appointment_names(appointment)
    their_names = event_names(event, name_strategies)
    name_hit = any(names_match(a, b) for a in our_names for b in their_names)
    return MatchResult(overlap=True, name_match=name_hit)


def is_duplicate(appointment: Appointment, event: ExternalEvent, **kwargs) -> bool:
    """True when ``event`` is the same real-world appointment as ``appointment``."""
    return explain_match(appointment, event, **kwargs).duplicate
