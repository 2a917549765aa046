"""Notification gateway: outbound messages through Telnyx."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

import telnyx

from app.types.calendar_contract import Recipient
from app.utils.phone import digits_only
from config import settings

_LOGGER = logging.getLogger(__name__)

FROM_NUM = settings.TELNYX_FROM_NUMBER
TELNYX_API_KEY = settings.TELNYX_API_KEY
if TELNYX_API_KEY:
    telnyx.api_key = TELNYX_API_KEY


def to_e164(phone: str, country_code: str = settings.DEFAULT_COUNTRY_CODE) -> str:
    """"0123456789" -> "+60123456789"; numbers already carrying a country code are kept."""
    digits = digits_only(phone)
    if digits.startswith("0"):
        digits = country_code + digits[1:]
    return "+" + digits


def send_sms(to: str, body: str) -> None:
    if not TELNYX_API_KEY or not FROM_NUM:
        _LOGGER.info("[SMS] DEV mode: would send to %s: %s", to, body)
        return
    telnyx.Message.create(from_=FROM_NUM, to=to, text=body)


async def send_notification(
    recipient: Recipient,
    message: str,
    context: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Deliver one message; ``False`` when the recipient has no usable number.

    Transport errors propagate so the caller can log them per recipient.
    """
    phone = digits_only(recipient.phone)
    if not phone:
        _LOGGER.warning("[SMS] recipient %s has no phone number (%s)", recipient.id, dict(context or {}))
        return False
    await asyncio.to_thread(send_sms, to_e164(phone), message)
    _LOGGER.debug("[SMS] sent to %s (%s)", phone, dict(context or {}))
    return True
