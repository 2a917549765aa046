"""Normalisation helpers for the phone numbers and names used in matching."""

from __future__ import annotations

import re

_NON_DIGIT = re.compile(r"\D")
_NON_LETTER = re.compile(r"[^a-z]")

MIN_PHONE_DIGITS = 8
MIN_NAME_CHARS = 3


def digits_only(value: str | None) -> str:
    return _NON_DIGIT.sub("", value or "")


def normalize_name(value: str | None) -> str:
    """Lower-case, trim and drop everything that is not a letter."""
    return _NON_LETTER.sub("", (value or "").strip().lower())


def unique_phones(candidates) -> list[str]:
    """Digit-stripped, order-preserving, without blanks or repeats."""
    seen: list[str] = []
    for raw in candidates:
        digits = digits_only(raw)
        if digits and digits not in seen:
            seen.append(digits)
    return seen


def unique_names(candidates) -> list[str]:
    """Normalised names, dropping repeats and anything shorter than 3 letters."""
    seen: list[str] = []
    for raw in candidates:
        name = normalize_name(raw)
        if len(name) >= MIN_NAME_CHARS and name not in seen:
            seen.append(name)
    return seen


def phones_match(a: str, b: str) -> bool:
    """Compare two digit strings, tolerating country-code prefixes.

    Equal trailing 8 or 10 digits count as a match, as does one number
    containing the other when the shorter has at least 8 digits.
    """
    a, b = digits_only(a), digits_only(b)
    if not a or not b:
        return False
    for width in (8, 10):
        if len(a) >= width and len(b) >= width and a[-width:] == b[-width:]:
            return True
    shorter = a if len(a) <= len(b) else b
    if len(shorter) < MIN_PHONE_DIGITS:
        return False
    return a in b or b in a


def names_match(a: str, b: str) -> bool:
    """Substring match on normalised names.

    Short names can produce false positives ("ali" matches "alison").
    """
    a, b = normalize_name(a), normalize_name(b)
    if not a or not b:
        return False
    return a in b or b in a
