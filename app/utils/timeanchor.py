"""Turn ambiguous date inputs into absolute UTC instants.

Two regimes exist because the rest of the CRM stores values two ways:

* session timestamps are stored already converted, so wall-clock digits
  without an offset are UTC (:func:`as_absolute_instant`);
* call slots and follow-up due times are chosen in local wall-clock time, so
  offset-less digits are civil time in the local zone (:func:`as_zoned_instant`).

Values that carry an offset are taken as-is under both regimes.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.errors import AnchorError

UTC = timezone.utc

_OFFSET_ZONE = re.compile(r"^(?:UTC)?([+-])(\d{2}):?(\d{2})$")


def resolve_zone(zone: str | tzinfo) -> tzinfo:
    """Accept an Olson name (``America/Phoenix``), ``UTC`` or a fixed offset (``-07:00``)."""
    if isinstance(zone, tzinfo):
        return zone
    name = zone.strip()
    if name.upper() in {"UTC", "Z"}:
        return UTC
    m = _OFFSET_ZONE.match(name)
    if m:
        sign, hh, mm = m.groups()
        delta = timedelta(hours=int(hh), minutes=int(mm))
        return timezone(-delta if sign == "-" else delta)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise AnchorError(f"unknown timezone '{zone}'") from exc


def _parse(value: str | date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if not isinstance(value, str) or not value.strip():
        raise AnchorError(f"cannot interpret {value!r} as a date/time")
    text = value.strip().replace(" ", "T", 1)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise AnchorError(f"cannot interpret {value!r} as a date/time") from exc


def as_absolute_instant(value: str | date | datetime) -> datetime:
    """Offset-aware input is kept; naive wall-clock digits are read as UTC."""
    dt = _parse(value)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def as_zoned_instant(value: str | date | datetime, zone: str | tzinfo) -> datetime:
    """Naive wall-clock digits are civil time in ``zone``; returns UTC."""
    dt = _parse(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=resolve_zone(zone))
    return dt.astimezone(UTC)


def as_instant(value: str | date | datetime, regime: str, zone: str | tzinfo) -> datetime:
    if regime == "utc":
        return as_absolute_instant(value)
    if regime == "local":
        return as_zoned_instant(value, zone)
    raise AnchorError(f"unknown anchor regime '{regime}'")


def utc_now() -> datetime:
    return datetime.now(UTC)


def civil_now_in(zone: str | tzinfo, now: datetime | None = None) -> datetime:
    """Current civil date/time in ``zone`` (tz-aware, in that zone)."""
    return (now or utc_now()).astimezone(resolve_zone(zone))


def civil_date_in(instant: datetime, zone: str | tzinfo) -> date:
    return as_absolute_instant(instant).astimezone(resolve_zone(zone)).date()


def local_noon(day: date, zone: str | tzinfo) -> datetime:
    return as_zoned_instant(datetime.combine(day, time(12, 0)), zone)


def local_day_bounds(instant: datetime, zone: str | tzinfo) -> tuple[datetime, datetime]:
    """UTC [start, end) of the local calendar day containing ``instant``."""
    day = civil_date_in(instant, zone)
    start = as_zoned_instant(datetime.combine(day, time()), zone)
    end = as_zoned_instant(datetime.combine(day + timedelta(days=1), time()), zone)
    return start, end


def _clock(local: datetime) -> str:
    return f"{local.hour % 12 or 12}:{local:%M %p}"


def format_local(instant: datetime, zone: str | tzinfo) -> str:
    """``03/10/2026 1:00 PM`` in the local zone."""
    local = as_absolute_instant(instant).astimezone(resolve_zone(zone))
    return f"{local:%m/%d/%Y} {_clock(local)}"


def format_local_stamp(instant: datetime, zone: str | tzinfo) -> str:
    """``2026-03-10 1:00 PM MST``, used in operator confirmations."""
    local = as_absolute_instant(instant).astimezone(resolve_zone(zone))
    return f"{local:%Y-%m-%d} {_clock(local)} {local.tzname()}"
