"""
Read-side queries over the CRM tables and the stale-reminder prune rules.

Everything takes an explicit ``now`` so a sweep uses one consistent instant.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Type

from sqlalchemy import Delete, and_, delete, func, or_, select

from app.types.reminder_contract import (
    CLOSED_SESSION_STATUSES,
    INACTIVE_SESSION_STATUSES,
    CallOutcome,
    ContactSnapshot,
    DispatchOptions,
    DmStatus,
    DueReminder,
    ReminderCategory,
)
from db.db import session_scope
from db.models import (
    Contact,
    FirstSession,
    FirstSessionPlayer,
    Player,
    Reminder,
    Session,
    SessionPlayer,
)

SESSION_REMINDER = ReminderCategory.SESSION_REMINDER.value


def _active(model):
    """Not cancelled and not in a status that takes the session out of play."""
    return and_(
        model.cancelled.is_(False),
        or_(model.status.is_(None), model.status.not_in(INACTIVE_SESSION_STATUSES)),
    )


def _open(model):
    """Active and not yet completed: still worth reminding about."""
    return and_(
        model.cancelled.is_(False),
        or_(model.status.is_(None), model.status.not_in(CLOSED_SESSION_STATUSES)),
    )


def _enum_or_none(enum_cls: Type[Enum], value):
    try:
        return enum_cls(value) if value else None
    except ValueError:
        return None


# ──────────────────────────────────────────────────────────────────────
# 1. Sessions that still need their pre-session reminders
# ──────────────────────────────────────────────────────────────────────

async def sessions_missing_reminders(first: bool, now: datetime) -> list[dict]:
    model = FirstSession if first else Session
    link = Reminder.first_session_id if first else Reminder.session_id
    has_unsent = (
        select(Reminder.id)
        .where(
            link == model.id,
            Reminder.reminder_category == SESSION_REMINDER,
            Reminder.sent.is_(False),
        )
        .exists()
    )
    stmt = (
        select(model.id, model.parent_id, model.session_date)
        .join(Contact, Contact.id == model.parent_id)
        .where(_open(model), model.session_date > now, Contact.is_dead.is_(False), ~has_unsent)
        .order_by(model.session_date)
    )
    async with session_scope() as s:
        res = await s.execute(stmt)
        return [dict(r._mapping) for r in res.all()]


# ──────────────────────────────────────────────────────────────────────
# 2. Contact snapshots for the stage classifier
# ──────────────────────────────────────────────────────────────────────

async def inactive_contact_snapshots(now: datetime, min_days: int = 1) -> list[ContactSnapshot]:
    fs_active = and_(FirstSession.parent_id == Contact.id, _active(FirstSession))
    s_active = and_(Session.parent_id == Contact.id, _active(Session))
    s_attended = and_(
        Session.parent_id == Contact.id,
        Session.status == "completed",
        Session.showed_up.is_(True),
    )
    pending = and_(
        Reminder.parent_id == Contact.id,
        Reminder.reminder_category.like("%follow_up%"),
        Reminder.sent.is_(False),
    )
    stmt = (
        select(
            Contact,
            select(func.count(FirstSession.id)).where(fs_active).scalar_subquery().label("fs_count"),
            select(func.min(FirstSession.session_date)).where(fs_active).scalar_subquery().label("fs_anchor"),
            select(func.count(Session.id)).where(s_active).scalar_subquery().label("s_count"),
            select(func.max(Session.session_date)).where(s_attended).scalar_subquery().label("s_last"),
            select(func.count(Reminder.id)).where(pending).scalar_subquery().label("pending"),
        )
        .where(
            Contact.is_dead.is_(False),
            Contact.last_activity_at < now - timedelta(days=min_days),
        )
        .order_by(Contact.last_activity_at)
    )
    async with session_scope() as s:
        res = await s.execute(stmt)
        rows = res.all()

    return [
        ContactSnapshot(
            id=c.id,
            name=c.name,
            dm_status=_enum_or_none(DmStatus, c.dm_status),
            phone_call_booked=bool(c.phone_call_booked),
            call_date_time=c.call_date_time,
            call_outcome=_enum_or_none(CallOutcome, c.call_outcome),
            is_customer=bool(c.is_customer),
            is_dead=bool(c.is_dead),
            last_activity_at=c.last_activity_at,
            active_first_session_count=fs_count or 0,
            earliest_active_first_session_at=fs_anchor,
            active_session_count=s_count or 0,
            last_completed_session_at=s_last,
            pending_follow_ups=pending or 0,
        )
        for c, fs_count, fs_anchor, s_count, s_last, pending in rows
    ]


# ──────────────────────────────────────────────────────────────────────
# 3. Due session reminders for the dispatcher
# ──────────────────────────────────────────────────────────────────────

async def fetch_due_session_reminders(
    lower: datetime, upper: datetime, options: DispatchOptions
) -> list[DueReminder]:
    stmt = (
        select(
            Reminder,
            Contact.name,
            Contact.secondary_parent_name,
            Contact.phone,
            func.coalesce(Session.session_date, FirstSession.session_date).label("session_date"),
        )
        .join(Contact, Contact.id == Reminder.parent_id)
        .outerjoin(Session, Session.id == Reminder.session_id)
        .outerjoin(FirstSession, FirstSession.id == Reminder.first_session_id)
        .where(
            Reminder.sent.is_(False),
            Reminder.undeliverable.is_(False),
            Reminder.reminder_category == SESSION_REMINDER,
            Reminder.due_at >= lower,
            Reminder.due_at <= upper,
            Contact.is_dead.is_(False),
            or_(Reminder.session_id.is_(None), _active(Session)),
            or_(Reminder.first_session_id.is_(None), _active(FirstSession)),
        )
    )
    if options.parent_id is not None:
        stmt = stmt.where(Reminder.parent_id == options.parent_id)
    if options.session_id is not None:
        stmt = stmt.where(Reminder.session_id == options.session_id)
    if options.first_session_id is not None:
        stmt = stmt.where(Reminder.first_session_id == options.first_session_id)
    if options.reminder_types:
        stmt = stmt.where(Reminder.reminder_type.in_([t.value for t in options.reminder_types]))
    stmt = stmt.order_by(Reminder.due_at, Reminder.id).limit(options.batch_size)

    async with session_scope() as s:
        res = await s.execute(stmt)
        rows = res.all()

    due: list[DueReminder] = []
    for r, name, secondary, phone, session_date in rows:
        due.append(
            DueReminder(
                id=r.id,
                parent_id=r.parent_id,
                session_id=r.session_id,
                first_session_id=r.first_session_id,
                reminder_type=r.reminder_type,
                due_at=r.due_at,
                parent_name=name,
                secondary_parent_name=secondary,
                parent_phone=phone,
                session_date=session_date,
                player_names=await session_player_names(r.session_id, r.first_session_id),
                session_number=(
                    await session_number(r.parent_id, session_date) if session_date else None
                ),
            )
        )
    return due


async def session_player_names(
    session_id: Optional[int], first_session_id: Optional[int]
) -> list[str]:
    if session_id is not None:
        stmt = (
            select(Player.name)
            .join(SessionPlayer, SessionPlayer.player_id == Player.id)
            .where(SessionPlayer.session_id == session_id)
        )
    elif first_session_id is not None:
        stmt = (
            select(Player.name)
            .join(FirstSessionPlayer, FirstSessionPlayer.player_id == Player.id)
            .where(FirstSessionPlayer.first_session_id == first_session_id)
        )
    else:
        return []
    async with session_scope() as s:
        res = await s.execute(stmt.order_by(Player.created_at, Player.id))
        return [n for n in res.scalars().all() if n]


async def session_number(parent_id: int, session_date: datetime) -> int:
    """Ordinal of the session among the contact's active sessions, first sessions included."""
    async with session_scope() as s:
        total = 0
        for model in (FirstSession, Session):
            res = await s.execute(
                select(func.count(model.id)).where(
                    model.parent_id == parent_id,
                    _active(model),
                    model.session_date <= session_date,
                )
            )
            total += res.scalar_one()
        return total


async def same_day_session_notes(parent_id: int, start: datetime, end: datetime) -> list[str]:
    notes: list[tuple[datetime, str]] = []
    async with session_scope() as s:
        for model in (FirstSession, Session):
            res = await s.execute(
                select(model.session_date, model.notes).where(
                    model.parent_id == parent_id,
                    model.session_date >= start,
                    model.session_date < end,
                    model.cancelled.is_(False),
                    model.notes.is_not(None),
                )
            )
            notes.extend((d, n) for d, n in res.all())
    notes.sort(key=lambda item: item[0], reverse=True)
    return [" ".join(n.split()) for _, n in notes if n and n.strip()]


# ──────────────────────────────────────────────────────────────────────
# 4. Stale-reminder prune rules
# ──────────────────────────────────────────────────────────────────────

def _unsent(category: Optional[str] = None):
    cond = Reminder.sent.is_(False)
    if category is None:
        return cond
    return and_(cond, Reminder.reminder_category == category)


def _closed(model, link):
    closed = select(model.id).where(
        model.id == link,
        or_(model.cancelled.is_(True), model.status.in_(CLOSED_SESSION_STATUSES)),
    ).correlate(Reminder)
    return and_(link.is_not(None), closed.exists())


def _prune_closed_sessions(now: datetime) -> Delete:
    return delete(Reminder).where(
        _unsent(SESSION_REMINDER),
        or_(
            _closed(FirstSession, Reminder.first_session_id),
            _closed(Session, Reminder.session_id),
        ),
    )


def _prune_past_session_reminders(now: datetime) -> Delete:
    return delete(Reminder).where(
        _unsent(SESSION_REMINDER), Reminder.due_at < now - timedelta(days=1)
    )


def _prune_dm_after_call_booked(now: datetime) -> Delete:
    booked = select(Contact.id).where(
        Contact.id == Reminder.parent_id, Contact.phone_call_booked.is_(True)
    ).correlate(Reminder)
    return delete(Reminder).where(
        _unsent(ReminderCategory.DM_FOLLOW_UP.value), booked.exists()
    )


def _prune_post_call_after_booking(now: datetime) -> Delete:
    booked = select(Contact.id).where(
        Contact.id == Reminder.parent_id,
        Contact.call_outcome == CallOutcome.SESSION_BOOKED.value,
    ).correlate(Reminder)
    return delete(Reminder).where(
        _unsent(ReminderCategory.POST_CALL_FOLLOW_UP.value), booked.exists()
    )


def _prune_post_first_session_with_sessions(now: datetime) -> Delete:
    has_session = select(Session.id).where(
        Session.parent_id == Reminder.parent_id,
        Session.cancelled.is_(False),
        or_(Session.status.is_(None), Session.status != "cancelled"),
    ).correlate(Reminder)
    return delete(Reminder).where(
        _unsent(ReminderCategory.POST_FIRST_SESSION_FOLLOW_UP.value), has_session.exists()
    )


def _prune_post_session_with_new_booking(now: datetime) -> Delete:
    upcoming = select(Session.id).where(
        Session.parent_id == Reminder.parent_id,
        Session.session_date > now,
        Session.cancelled.is_(False),
        or_(Session.status.is_(None), Session.status != "cancelled"),
    ).correlate(Reminder)
    return delete(Reminder).where(
        _unsent(ReminderCategory.POST_SESSION_FOLLOW_UP.value), upcoming.exists()
    )


def _prune_expired_follow_ups(now: datetime) -> Delete:
    return delete(Reminder).where(
        _unsent(),
        Reminder.reminder_category.like("%follow_up%"),
        Reminder.due_at < now - timedelta(days=30),
    )


PRUNE_RULES: dict[str, Callable[[datetime], Delete]] = {
    "closed_session": _prune_closed_sessions,
    "past_session_reminder": _prune_past_session_reminders,
    "dm_after_call_booked": _prune_dm_after_call_booked,
    "post_call_after_session_booked": _prune_post_call_after_booking,
    "post_first_session_with_sessions": _prune_post_first_session_with_sessions,
    "post_session_with_new_booking": _prune_post_session_with_new_booking,
    "expired_follow_up": _prune_expired_follow_ups,
}


async def run_prune_rule(name: str, now: datetime) -> int:
    stmt = PRUNE_RULES[name](now)
    async with session_scope() as s:
        res = await s.execute(stmt)
        await s.commit()
        return res.rowcount or 0
