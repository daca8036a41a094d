"""Session and follow-up reminder scheduling.

Both schedulers only guarantee the reminder rows exist; whether a past-due
session reminder is still worth sending is the dispatcher's call.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from app.types.reminder_contract import AnchorZone, ReminderCategory, ReminderType
from app.utils.timeanchor import (
    as_absolute_instant,
    as_instant,
    civil_date_in,
    local_noon,
    utc_now,
)
from config import settings
import db

_LOGGER = logging.getLogger(__name__)

SESSION_OFFSETS: tuple[tuple[ReminderType, timedelta], ...] = (
    (ReminderType.SESSION_48H, timedelta(hours=-48)),
    (ReminderType.SESSION_24H, timedelta(hours=-24)),
    (ReminderType.SESSION_6H, timedelta(hours=-6)),
)

DAY_OF_OFFSETS: tuple[tuple[ReminderType, timedelta], ...] = (
    (ReminderType.SESSION_START, timedelta(0)),
    (ReminderType.COACH_SESSION_START, timedelta(0)),
    (ReminderType.COACH_SESSION_PLUS_60M, timedelta(minutes=60)),
    (ReminderType.PARENT_SESSION_PLUS_120M, timedelta(minutes=120)),
)

FOLLOW_UP_OFFSETS: tuple[tuple[ReminderType, int], ...] = (
    (ReminderType.FOLLOW_UP_1D, 1),
    (ReminderType.FOLLOW_UP_3D, 3),
    (ReminderType.FOLLOW_UP_7D, 7),
    (ReminderType.FOLLOW_UP_14D, 14),
)


async def schedule_session_reminders(
    parent_id: int,
    session_at: datetime | str,
    *,
    session_id: Optional[int] = None,
    first_session_id: Optional[int] = None,
    include_day_of: Optional[bool] = None,
) -> int:
    """Create the 48h/24h/6h reminders for one session. Returns rows created.

    A slot already holding a reminder, sent or not, is left alone.
    """
    if (session_id is None) == (first_session_id is None):
        raise ValueError("pass exactly one of session_id / first_session_id")
    if include_day_of is None:
        include_day_of = settings.SESSION_DAY_OF_REMINDERS

    start = as_absolute_instant(session_at)
    offsets = SESSION_OFFSETS + (DAY_OF_OFFSETS if include_day_of else ())

    created = 0
    for rtype, offset in offsets:
        if await db.insert_reminder_if_absent(
            parent_id,
            rtype,
            ReminderCategory.SESSION_REMINDER,
            start + offset,
            session_id=session_id,
            first_session_id=first_session_id,
            unsent_only=False,
        ):
            created += 1
    _LOGGER.debug(
        "Session reminders for parent=%s session=%s first_session=%s: %d created",
        parent_id, session_id, first_session_id, created,
    )
    return created


def follow_up_due_dates(
    anchor_day: date,
    today: date,
    zone: str,
    backfill: bool = False,
) -> list[tuple[ReminderType, datetime]]:
    """Local-noon due instants for the 1/3/7/14-day cadence from ``anchor_day``."""
    due = []
    for rtype, days in FOLLOW_UP_OFFSETS:
        day = anchor_day + timedelta(days=days)
        if day < today and not backfill:
            continue
        due.append((rtype, local_noon(day, zone)))
    return due


async def schedule_follow_ups(
    parent_id: int,
    category: ReminderCategory | str,
    anchor: Optional[datetime | date | str] = None,
    anchor_zone: AnchorZone = "utc",
    *,
    backfill: Optional[bool] = None,
    now: Optional[datetime] = None,
    zone: Optional[str] = None,
) -> int:
    """Create the follow-up cadence for ``category``. Returns rows created.

    The anchor is read under ``anchor_zone`` ("utc" or "local"), then every
    offset lands at 12:00 local time on anchor date + N days. Offsets whose
    date is before today (local) are skipped unless ``backfill`` is set.
    """
    category = ReminderCategory(category)
    if not category.is_follow_up:
        raise ValueError(f"{category.value} is not a follow-up category")
    zone = zone or settings.LOCAL_TIMEZONE
    if backfill is None:
        backfill = settings.FOLLOW_UP_BACKFILL
    now = now or utc_now()

    anchor_at = now if anchor is None else as_instant(anchor, anchor_zone, zone)
    anchor_day = civil_date_in(anchor_at, zone)
    today = civil_date_in(now, zone)

    created = 0
    for rtype, due_at in follow_up_due_dates(anchor_day, today, zone, backfill):
        if await db.insert_reminder_if_absent(parent_id, rtype, category, due_at):
            created += 1
    _LOGGER.debug(
        "Follow-ups %s for parent=%s anchored %s: %d created",
        category.value, parent_id, anchor_day.isoformat(), created,
    )
    return created
