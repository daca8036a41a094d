"""ORM models for the reminder engine and the CRM tables it reads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from app.types.reminder_contract import ReminderType


class UTCDateTime(TypeDecorator):
    """TIMESTAMPTZ that always binds and returns aware UTC datetimes.

    Naive values are taken to be UTC already; SQLite drops tzinfo on the way
    in, so results are re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# ──────────────────────────────────────────────────────────────────────
# CRM tables (owned by the record-editing layer, read here)
# ──────────────────────────────────────────────────────────────────────

class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    secondary_parent_name: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    dm_status: Mapped[Optional[str]] = mapped_column(String(32))
    phone_call_booked: Mapped[bool] = mapped_column(Boolean, default=False)
    call_date_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    call_outcome: Mapped[Optional[str]] = mapped_column(String(32))
    is_customer: Mapped[bool] = mapped_column(Boolean, default=False)
    is_dead: Mapped[bool] = mapped_column(Boolean, default=False)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)


class Player(Base):
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int] = mapped_column(ForeignKey("contacts.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)


class FirstSession(Base):
    __tablename__ = "first_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int] = mapped_column(ForeignKey("contacts.id", ondelete="CASCADE"))
    session_date: Mapped[datetime] = mapped_column(UTCDateTime())
    status: Mapped[Optional[str]] = mapped_column(String(32))
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
    showed_up: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)


class Session(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int] = mapped_column(ForeignKey("contacts.id", ondelete="CASCADE"))
    session_date: Mapped[datetime] = mapped_column(UTCDateTime())
    status: Mapped[Optional[str]] = mapped_column(String(32))
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
    showed_up: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)


class FirstSessionPlayer(Base):
    __tablename__ = "first_session_players"

    first_session_id: Mapped[int] = mapped_column(
        ForeignKey("first_sessions.id", ondelete="CASCADE"), primary_key=True
    )
    player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), primary_key=True
    )


class SessionPlayer(Base):
    __tablename__ = "session_players"

    session_id: Mapped[int] = mapped_column(
        ForeignKey("sessions.id", ondelete="CASCADE"), primary_key=True
    )
    player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), primary_key=True
    )


# ──────────────────────────────────────────────────────────────────────
# Reminders
# ──────────────────────────────────────────────────────────────────────

_TYPE_LIST = ", ".join(f"'{t.value}'" for t in ReminderType)


class Reminder(Base):
    __tablename__ = "reminders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int] = mapped_column(ForeignKey("contacts.id", ondelete="CASCADE"))
    first_session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("first_sessions.id", ondelete="CASCADE")
    )
    session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sessions.id", ondelete="CASCADE")
    )
    reminder_type: Mapped[str] = mapped_column(String(32))
    reminder_category: Mapped[str] = mapped_column(String(40))
    due_at: Mapped[datetime] = mapped_column(UTCDateTime())
    sent: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    undeliverable: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "NOT (first_session_id IS NOT NULL AND session_id IS NOT NULL)",
            name="ck_reminders_single_session_link",
        ),
        CheckConstraint(
            f"reminder_type IN ({_TYPE_LIST})",
            name="ck_reminders_reminder_type",
        ),
        Index(
            "uq_reminders_unsent_slot",
            "parent_id",
            "reminder_type",
            "reminder_category",
            "due_at",
            unique=True,
            postgresql_where=text("sent = false"),
            sqlite_where=text("sent = 0"),
        ),
        Index("ix_reminders_due_unsent", "sent", "due_at"),
    )

    def as_dict(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}
