"""Message bodies for due session reminders, one strategy per reminder type.

Each template declares who it goes to and builds its body from a
:class:`MessageContext`. A template returns ``None`` when it has no usable
destination; the dispatcher treats that as a skip.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from app.types.reminder_contract import DueReminder, PreparedMessage, ReminderType
from app.utils.links import LinkBuilder
from app.utils.sms import normalize_us_phone_number
from app.utils.timeanchor import civil_date_in, format_local

NotesLoader = Callable[[int, datetime], Awaitable[list[str]]]


def compact_whitespace(value: str) -> str:
    return " ".join(value.split())


def clip(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[:max_length - 1]}..."


def player_label(names: list[str]) -> str:
    names = [n for n in names if n]
    if not names:
        return "your player"
    if len(names) == 1:
        return names[0]
    if len(names) == 2:
        return f"{names[0]} and {names[1]}"
    return f"{', '.join(names[:-1])}, and {names[-1]}"


def parent_display_name(row: DueReminder) -> str:
    if row.secondary_parent_name and row.secondary_parent_name.strip():
        return f"{row.parent_name} and {row.secondary_parent_name.strip()}"
    return row.parent_name


@dataclass
class MessageContext:
    row: DueReminder
    operator_phone: Callable[[], Optional[str]]
    zone: str
    links: LinkBuilder
    prefix: str
    suffix: str
    same_day_notes: Optional[NotesLoader] = None
    _date_key: str = field(init=False, default="")

    def __post_init__(self):
        if self.row.session_date is not None:
            self._date_key = civil_date_in(self.row.session_date, self.zone).isoformat()

    @property
    def players(self) -> str:
        return player_label(self.row.player_names)

    @property
    def session_time(self) -> str:
        return format_local(self.row.session_date, self.zone)

    @property
    def coach_phone(self) -> Optional[str]:
        return self.operator_phone()

    @property
    def parent_phone(self) -> Optional[str]:
        return normalize_us_phone_number(self.row.parent_phone)

    def link(self, kind: str) -> Optional[str]:
        return self.links.build(
            kind,
            self.row.parent_id,
            self._date_key,
            session_id=self.row.session_id,
            first_session_id=self.row.first_session_id,
        )

    def wrap_parent(self, core: str) -> str:
        return f"{self.prefix}\n{compact_whitespace(core)}\n{self.suffix}"

    @staticmethod
    def wrap_coach(core: str) -> str:
        return compact_whitespace(core)


class MessageTemplate:
    reminder_type: ReminderType
    audience = "parent"

    async def build(self, ctx: MessageContext) -> Optional[PreparedMessage]:
        raise NotImplementedError


class CountdownTemplate(MessageTemplate):
    """48/24/6-hour parent reminders."""

    def __init__(self, reminder_type: ReminderType, label: str):
        self.reminder_type = reminder_type
        self.label = label

    async def build(self, ctx):
        to = ctx.parent_phone
        if not to:
            return None
        return PreparedMessage(
            to=to,
            body=ctx.wrap_parent(
                f"{self.label} reminder for {ctx.players}: session at {ctx.session_time}."
            ),
        )


class SessionStartTemplate(MessageTemplate):
    reminder_type = ReminderType.SESSION_START

    async def build(self, ctx):
        to = ctx.parent_phone
        if not to:
            return None
        profile = ctx.link("profile")
        line = (
            f"View profile + session plan: {profile}."
            if profile
            else "Please check your player profile for session updates and plan."
        )
        return PreparedMessage(
            to=to, body=ctx.wrap_parent(f"Session time is now for {ctx.players}. {line}")
        )


class CoachSessionStartTemplate(MessageTemplate):
    reminder_type = ReminderType.COACH_SESSION_START
    audience = "coach"

    async def build(self, ctx):
        to = ctx.coach_phone
        if not to:
            return None
        return PreparedMessage(
            to=to,
            body=ctx.wrap_coach(
                f"Coach reminder: {ctx.players} with {parent_display_name(ctx.row)} starts now "
                f"({ctx.session_time}). Get photos, videos, and sports drink ready."
            ),
        )


class CoachPlus60Template(MessageTemplate):
    reminder_type = ReminderType.COACH_SESSION_PLUS_60M
    audience = "coach"
    review_session_number = 3

    async def build(self, ctx):
        to = ctx.coach_phone
        if not to:
            return None
        review = ""
        if ctx.row.session_number == self.review_session_number:
            review = (
                f" This is session #{self.review_session_number}, "
                "ask for a review and capture quick feedback."
            )
        return PreparedMessage(
            to=to,
            body=ctx.wrap_coach(
                f"60-minute follow-up: if not already done, get a photo with {ctx.players}.{review}"
            ),
        )


class ParentPlus120Template(MessageTemplate):
    reminder_type = ReminderType.PARENT_SESSION_PLUS_120M

    async def build(self, ctx):
        to = ctx.parent_phone
        if not to:
            return None

        notes: list[str] = []
        if ctx.same_day_notes is not None:
            notes = await ctx.same_day_notes(ctx.row.parent_id, ctx.row.session_date)
        if notes:
            notes_text = f"Today's feedback: {clip(' | '.join(notes), 220)}."
        else:
            notes_text = (
                "Today's feedback and test updates from this session are being posted to the profile."
            )

        feedback, tests = ctx.link("feedback"), ctx.link("tests")
        links = []
        if feedback:
            links.append(f"Feedback: {feedback}")
        if tests:
            links.append(f"Tests: {tests}")
        if not links:
            profile = ctx.link("profile")
            if profile:
                links.append(f"Profile: {profile}")
        links_text = f" {' '.join(links)}" if links else ""

        return PreparedMessage(
            to=to,
            body=ctx.wrap_parent(
                f"Thank you for training with David today, {parent_display_name(ctx.row)}. "
                f"{notes_text}{links_text}"
            ),
        )


TEMPLATES: dict[ReminderType, MessageTemplate] = {
    t.reminder_type: t
    for t in (
        CountdownTemplate(ReminderType.SESSION_48H, "48-hour"),
        CountdownTemplate(ReminderType.SESSION_24H, "24-hour"),
        CountdownTemplate(ReminderType.SESSION_6H, "6-hour"),
        SessionStartTemplate(),
        CoachSessionStartTemplate(),
        CoachPlus60Template(),
        ParentPlus120Template(),
    )
}


def template_for(reminder_type: ReminderType) -> Optional[MessageTemplate]:
    return TEMPLATES.get(reminder_type)
