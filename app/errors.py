"""Exception taxonomy shared by the reconciliation and reminder services.

None of these escape a batch operation: each is raised at the point where a
single input (phone, date, rule, feed, recipient) is found to be unusable and
caught by the caller that isolates that input from its siblings.
"""

from __future__ import annotations


class CalendarCoreError(Exception):
    """Base class for every error raised by the calendar core."""


class ValidationError(CalendarCoreError):
    """Malformed phone number, date or reminder rule.

    Degrades to "no match" in the matcher and to "skip rule" in the rule
    engine.
    """


class TransientDeliveryError(CalendarCoreError):
    """A single recipient send failed; the rest of the batch continues."""

    def __init__(self, recipient: str, reason: str):
        super().__init__(f"delivery to {recipient} failed: {reason}")
        self.recipient = recipient
        self.reason = reason


class ConfigurationError(CalendarCoreError):
    """A configured feed identifier failed validation; that feed is skipped."""

    def __init__(self, feed_id: str, reason: str = "invalid calendar id"):
        super().__init__(f"{reason}: {feed_id!r}")
        self.feed_id = feed_id
        self.reason = reason


class DataUnavailableError(CalendarCoreError):
    """Canonical appointments are not loaded yet; reconciliation fails open."""
