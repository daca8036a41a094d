"""
Async DB helpers for the reminder engine.
Uses SQLAlchemy 2.0 + asyncpg driver (aiosqlite in tests) – no raw SQL strings
in app code.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import (
    Boolean, Integer, String, and_, case, delete, insert, literal, or_, select, update
)
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.pool import StaticPool
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from app.types.reminder_contract import ReminderCategory, ReminderType
from app.utils.timeanchor import as_absolute_instant
from db.models import Base, Contact, Reminder, UTCDateTime

_LOGGER = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────
# 1. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith("sqlite"):
        return url
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url


def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            # One shared connection so in-memory databases survive across sessions.
            _engine = create_async_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with _session_maker() as session:
        yield session


# ──────────────────────────────────────────────────────────────────────
# 2. DDL helper (tests and local setup; production runs Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None


# ──────────────────────────────────────────────────────────────────────
# 3. Reminder store
# ──────────────────────────────────────────────────────────────────────

def _slot(parent_id: int, reminder_type: str, category: str, due_at: datetime, unsent_only: bool = True):
    cond = and_(
        Reminder.parent_id == parent_id,
        Reminder.reminder_type == reminder_type,
        Reminder.reminder_category == category,
        Reminder.due_at == due_at,
    )
    if unsent_only:
        cond = and_(cond, Reminder.sent.is_(False))
    return cond


def _check_linkage(category: str, session_id: Optional[int], first_session_id: Optional[int]):
    linked = [x for x in (session_id, first_session_id) if x is not None]
    if category == ReminderCategory.SESSION_REMINDER.value:
        if len(linked) != 1:
            raise ValueError("session reminders need exactly one of session_id / first_session_id")
    elif linked:
        raise ValueError("follow-up reminders cannot be linked to a session")


def _append_note(note: str):
    """SQL expression appending ``note`` as a new line of ``notes``."""
    return case(
        (or_(Reminder.notes.is_(None), Reminder.notes == ""), literal(note)),
        else_=Reminder.notes + "\n" + note,
    )


# 3.1 Existence check ----------------------------------------------------
async def reminder_exists(
    parent_id: int,
    reminder_type: ReminderType | str,
    category: ReminderCategory | str,
    due_at: datetime,
    unsent_only: bool = True,
) -> bool:
    rtype = ReminderType(reminder_type).value
    cat = ReminderCategory(category).value
    due_at = as_absolute_instant(due_at)
    cond = _slot(parent_id, rtype, cat, due_at, unsent_only)
    async with session_scope() as s:
        res = await s.execute(select(Reminder.id).where(cond).limit(1))
        return res.first() is not None


# 3.2 Conditional insert -------------------------------------------------
@retry(
    wait=wait_random_exponential(multiplier=0.2, max=2),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)
async def insert_reminder_if_absent(
    parent_id: int,
    reminder_type: ReminderType | str,
    category: ReminderCategory | str,
    due_at: datetime,
    session_id: Optional[int] = None,
    first_session_id: Optional[int] = None,
    unsent_only: bool = True,
) -> bool:
    """Insert unless an unsent reminder occupies the same slot.

    With ``unsent_only=False`` a sent reminder in the slot blocks the insert
    too. The guard and the insert are one ``INSERT ... SELECT ... WHERE NOT
    EXISTS`` statement; the partial unique index catches the remaining race,
    which is reported as "not created".
    """
    rtype = ReminderType(reminder_type).value
    cat = ReminderCategory(category).value
    _check_linkage(cat, session_id, first_session_id)
    due_at = as_absolute_instant(due_at)

    occupied = select(Reminder.id).where(_slot(parent_id, rtype, cat, due_at, unsent_only)).correlate(None)
    row = select(
        literal(parent_id, Integer),
        literal(first_session_id, Integer),
        literal(session_id, Integer),
        literal(rtype, String),
        literal(cat, String),
        literal(due_at, UTCDateTime()),
        literal(False, Boolean),
        literal(False, Boolean),
        literal(datetime.now(timezone.utc), UTCDateTime()),
    ).where(~occupied.exists())
    stmt = (
        insert(Reminder)
        .from_select(
            [
                "parent_id", "first_session_id", "session_id", "reminder_type",
                "reminder_category", "due_at", "sent", "undeliverable", "created_at",
            ],
            row,
        )
        .returning(Reminder.id)
    )

    async with session_scope() as s:
        try:
            res = await s.execute(stmt)
            new_id = res.scalar_one_or_none()
            await s.commit()
        except IntegrityError:
            await s.rollback()
            if await reminder_exists(parent_id, rtype, cat, due_at, unsent_only):
                _LOGGER.debug("Lost insert race for %s/%s parent=%s", cat, rtype, parent_id)
                return False
            raise
        return new_id is not None


# 3.3 Deletes ------------------------------------------------------------
async def delete_unsent(parent_id: int, category: ReminderCategory | str) -> int:
    cat = ReminderCategory(category).value
    async with session_scope() as s:
        res = await s.execute(
            delete(Reminder).where(
                Reminder.parent_id == parent_id,
                Reminder.reminder_category == cat,
                Reminder.sent.is_(False),
            )
        )
        await s.commit()
        return res.rowcount or 0


# 3.4 Delivery outcome ---------------------------------------------------
async def append_reminder_note(rid: int, note: str):
    async with session_scope() as s:
        await s.execute(
            update(Reminder).where(Reminder.id == rid).values(notes=_append_note(note))
        )
        await s.commit()


async def mark_reminder_sent(rid: int, note: Optional[str] = None) -> Optional[dict]:
    values = {"sent": True, "sent_at": datetime.now(timezone.utc)}
    if note:
        values["notes"] = _append_note(note)
    async with session_scope() as s:
        res = await s.execute(
            update(Reminder).where(Reminder.id == rid).values(**values).returning(Reminder)
        )
        row = res.scalar_one_or_none()
        await s.commit()
        return row.as_dict() if row else None


async def mark_reminder_undeliverable(rid: int, note: str):
    async with session_scope() as s:
        await s.execute(
            update(Reminder)
            .where(Reminder.id == rid)
            .values(undeliverable=True, notes=_append_note(note))
        )
        await s.commit()


# 3.5 Read interface -----------------------------------------------------
async def list_unsent_reminders(parent_id: Optional[int] = None) -> list[dict]:
    async with session_scope() as s:
        stmt = (
            select(Reminder, Contact.name)
            .join(Contact, Contact.id == Reminder.parent_id)
            .where(Reminder.sent.is_(False))
        )
        if parent_id is not None:
            stmt = stmt.where(Reminder.parent_id == parent_id)
        stmt = stmt.order_by(Reminder.due_at, Reminder.id)
        res = await s.execute(stmt)
        return [{**r.as_dict(), "parent_name": name} for r, name in res.all()]


async def get_reminder(rid: int) -> Optional[dict]:
    async with session_scope() as s:
        row = await s.get(Reminder, rid)
        return row.as_dict() if row else None
