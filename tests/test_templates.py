from datetime import datetime, timezone

import pytest

from app.services.templates import (
    MessageContext,
    clip,
    parent_display_name,
    player_label,
    template_for,
)
from app.types.reminder_contract import DueReminder, ReminderType
from app.utils.links import LinkBuilder, ReadThroughCache, template_url
from app.utils.sms import normalize_us_phone_number

UTC = timezone.utc
SESSION_AT = datetime(2026, 3, 10, 20, tzinfo=UTC)


def _row(reminder_type, **kw):
    values = dict(
        id=1,
        parent_id=42,
        session_id=9,
        reminder_type=reminder_type,
        due_at=SESSION_AT,
        parent_name="Maria Lopez",
        parent_phone="602.555.0100",
        session_date=SESSION_AT,
        player_names=["Leo"],
    )
    values.update(kw)
    return DueReminder(**values)


def _ctx(row, links=None, notes=None):
    return MessageContext(
        row=row,
        operator_phone=lambda: "+16025550199",
        zone="America/Phoenix",
        links=links or LinkBuilder(),
        prefix="Davids Soccer Training. DO NOT REPLY",
        suffix="Questions? Text Coach David.",
        same_day_notes=notes,
    )


def test_player_label():
    assert player_label([]) == "your player"
    assert player_label(["Leo", ""]) == "Leo"
    assert player_label(["Leo", "Mia"]) == "Leo and Mia"
    assert player_label(["Leo", "Mia", "Sam"]) == "Leo, Mia, and Sam"


def test_parent_display_name_and_clip():
    assert parent_display_name(_row("session_6h", secondary_parent_name=" Ana ")) == "Maria Lopez and Ana"
    assert parent_display_name(_row("session_6h", secondary_parent_name="  ")) == "Maria Lopez"
    assert clip("abcdef", 4) == "abc..."
    assert clip("abc", 4) == "abc"


def test_phone_normalization():
    assert normalize_us_phone_number("(602) 555-0100") == "+16025550100"
    assert normalize_us_phone_number("1 602 555 0100") == "+16025550100"
    assert normalize_us_phone_number("+44 20 7946 0958") == "+442079460958"
    assert normalize_us_phone_number("555-0100") is None
    assert normalize_us_phone_number(None) is None


@pytest.mark.asyncio
async def test_countdown_message_is_wrapped():
    msg = await template_for(ReminderType.SESSION_24H).build(_ctx(_row("session_24h")))
    assert msg.to == "+16025550100"
    lines = msg.body.split("\n")
    assert lines[0] == "Davids Soccer Training. DO NOT REPLY"
    assert lines[1] == "24-hour reminder for Leo: session at 03/10/2026 1:00 PM."
    assert lines[2] == "Questions? Text Coach David."


@pytest.mark.asyncio
async def test_session_start_uses_profile_link():
    links = LinkBuilder(profile_template="https://app.example.com/parents/{parentId}?date={date}")
    msg = await template_for(ReminderType.SESSION_START).build(_ctx(_row("session_start"), links))
    assert "https://app.example.com/parents/42?date=2026-03-10" in msg.body


@pytest.mark.asyncio
async def test_review_prompt_on_third_session():
    plain = await template_for(ReminderType.COACH_SESSION_PLUS_60M).build(
        _ctx(_row("coach_session_plus_60m", session_number=2))
    )
    third = await template_for(ReminderType.COACH_SESSION_PLUS_60M).build(
        _ctx(_row("coach_session_plus_60m", session_number=3))
    )
    assert plain.to == third.to == "+16025550199"
    assert "review" not in plain.body
    assert "session #3, ask for a review" in third.body


@pytest.mark.asyncio
async def test_after_session_message_includes_notes_and_links():
    async def notes(parent_id, session_date):
        assert parent_id == 42
        return ["Great first touch.", "Work on weak foot."]

    links = LinkBuilder(
        feedback_template="https://app.example.com/f/{parentId}/{sessionId}",
        tests_template="not a url",
    )
    msg = await template_for(ReminderType.PARENT_SESSION_PLUS_120M).build(
        _ctx(_row("parent_session_plus_120m"), links, notes)
    )
    assert "Today's feedback: Great first touch. | Work on weak foot.." in msg.body
    assert "Feedback: https://app.example.com/f/42/9" in msg.body
    assert "Tests:" not in msg.body


@pytest.mark.asyncio
async def test_parent_templates_need_a_phone():
    row = _row("session_start", parent_phone=None)
    assert await template_for(ReminderType.SESSION_START).build(_ctx(row)) is None
    assert template_for(ReminderType.FOLLOW_UP_1D) is None


def test_template_url():
    assert template_url("https://x.test/{parentId}/{unknown}", {"parentId": "7"}) is None
    assert template_url("https://x.test/{parentId}", {"parentId": "7"}) == "https://x.test/7"
    assert template_url("/relative/{parentId}", {"parentId": "7"}) is None
    assert template_url(None, {}) is None


@pytest.mark.asyncio
async def test_profile_link_needs_a_profile_id():
    template = "https://app.example.com/profiles/{profileId}"
    assert LinkBuilder(profile_template=template).build("profile", 42, "2026-03-10") is None

    missing = LinkBuilder(profile_template=template, profile_ids=ReadThroughCache(lambda pid: None))
    msg = await template_for(ReminderType.SESSION_START).build(_ctx(_row("session_start"), missing))
    assert "{profileId}" not in msg.body
    assert "https://" not in msg.body
    assert "Please check your player profile" in msg.body


@pytest.mark.asyncio
async def test_coach_templates_need_an_operator_number():
    ctx = _ctx(_row("coach_session_start"))
    ctx.operator_phone = lambda: None
    assert template_for(ReminderType.COACH_SESSION_START).audience == "coach"
    assert template_for(ReminderType.SESSION_START).audience == "parent"
    assert await template_for(ReminderType.COACH_SESSION_START).build(ctx) is None
    assert await template_for(ReminderType.COACH_SESSION_PLUS_60M).build(ctx) is None


def test_profile_ids_are_read_through():
    calls = []

    def loader(parent_id):
        calls.append(parent_id)
        return f"p-{parent_id}" if parent_id != 3 else None

    cache = ReadThroughCache(loader)
    links = LinkBuilder(profile_template="https://x.test/{profileId}", profile_ids=cache)
    assert links.build("profile", 42, "2026-03-10") == "https://x.test/p-42"
    assert links.build("profile", 42, "2026-03-11") == "https://x.test/p-42"
    assert cache.get(3) is None
    cache.get(3)
    assert calls == [42, 3]
    assert len(cache) == 2

    cache.invalidate(42)
    links.build("profile", 42, "2026-03-10")
    assert calls == [42, 3, 42]
