"""Outbound SMS over Telnyx plus US phone-number normalization."""

from __future__ import annotations

import logging
import re
from typing import Optional, Protocol

import telnyx

from app.errors import GatewayConfigError
from app.types.reminder_contract import SendResult
from config import settings

_LOGGER = logging.getLogger(__name__)

_NON_DIGIT = re.compile(r"\D")


def normalize_us_phone_number(value: Optional[str]) -> Optional[str]:
    """E.164 form of a US number, or None when it cannot be made canonical."""
    if not value or not value.strip():
        return None
    trimmed = value.strip()
    digits = _NON_DIGIT.sub("", trimmed)
    if trimmed.startswith("+") and len(digits) >= 10:
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return None


def get_coach_phone_number(raw: Optional[str] = None) -> str:
    number = normalize_us_phone_number(raw if raw is not None else settings.COACH_PHONE_NUMBER)
    if not number:
        raise GatewayConfigError(
            "Invalid COACH_PHONE_NUMBER. Provide a valid US number (10 digits or E.164 format)."
        )
    return number


class MessagingGateway(Protocol):
    def ensure_configured(self) -> None: ...

    def send(self, to: str, body: str) -> SendResult: ...


class TelnyxGateway:
    """Telnyx-backed gateway. Send failures come back as ``SendResult(ok=False)``."""

    def __init__(self, api_key: Optional[str] = None, from_number: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.TELNYX_API_KEY
        self.from_number = from_number if from_number is not None else settings.TELNYX_FROM_NUMBER

    def ensure_configured(self) -> None:
        if not self.api_key or not self.from_number:
            raise GatewayConfigError(
                "Missing Telnyx settings. Expected TELNYX_API_KEY and TELNYX_FROM_NUMBER."
            )
        if not normalize_us_phone_number(self.from_number):
            raise GatewayConfigError("Invalid TELNYX_FROM_NUMBER format.")

    def send(self, to: str, body: str) -> SendResult:
        dest = normalize_us_phone_number(to)
        if not dest:
            return SendResult(ok=False, error=f"Invalid destination phone number: {to}")
        self.ensure_configured()

        telnyx.api_key = self.api_key
        try:
            message = telnyx.Message.create(
                from_=normalize_us_phone_number(self.from_number), to=dest, text=body
            )
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Telnyx send to %s failed: %s", dest, exc)
            return SendResult(ok=False, error=str(exc) or exc.__class__.__name__)

        status = None
        recipients = getattr(message, "to", None) or []
        if recipients:
            first = recipients[0]
            status = first.get("status") if hasattr(first, "get") else getattr(first, "status", None)
        return SendResult(ok=True, provider_reference=getattr(message, "id", None), status=status)
