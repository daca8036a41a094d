from datetime import datetime, timedelta, timezone

import pytest

import db
from app.errors import GatewayConfigError
from app.services.dispatcher import Dispatcher, default_options
from app.types.reminder_contract import DispatchOptions
from app.utils.links import LinkBuilder
from app.utils.sms import TelnyxGateway
from config import settings

UTC = timezone.utc
NOW = datetime(2026, 3, 10, 14, 5, tzinfo=UTC)
SESSION_AT = datetime(2026, 3, 10, 20, tzinfo=UTC)
COACH = "(602) 555-0199"


def _dispatcher(gateway, **kw):
    return Dispatcher(
        gateway=gateway, links=LinkBuilder(), coach_phone=COACH, zone="America/Phoenix", **kw
    )


async def _due_six_hour(seed, phone="602-555-0100", **contact):
    pid = await seed.contact(phone=phone, **contact)
    sid = await seed.session(pid, SESSION_AT, players=("Leo",))
    rid = await seed.reminder(
        pid, "session_6h", "session_reminder", SESSION_AT - timedelta(hours=6), session_id=sid
    )
    return pid, rid


@pytest.mark.asyncio
async def test_sent_reminder_records_provider_and_coach_note(store, seed, gateway):
    _, rid = await _due_six_hour(seed)

    stats = await _dispatcher(gateway).run(DispatchOptions(), now=NOW)
    assert (stats.fetched, stats.sent, stats.failed, stats.skipped) == (1, 1, 0, 0)

    (to, body), (coach_to, coach_body) = gateway.sent
    assert to == "+16025550100"
    assert "6-hour reminder for Leo: session at 03/10/2026 1:00 PM." in body
    assert coach_to == "+16025550199"
    assert coach_body.startswith("Auto reminder sent: session_6h to +16025550100")

    row = await db.get_reminder(rid)
    assert row["sent"] is True
    assert row["notes"] == "sent:msg-1:queued | coach-notified:msg-2"


@pytest.mark.asyncio
async def test_gateway_failure_leaves_reminder_unsent(store, seed, make_gateway):
    _, rid = await _due_six_hour(seed)
    gateway = make_gateway(fail_with="carrier rejected")

    stats = await _dispatcher(gateway).run(DispatchOptions(), now=NOW)
    assert stats.failed == 1
    row = await db.get_reminder(rid)
    assert row["sent"] is False
    assert row["notes"] == "failed:carrier rejected"

    # Retried on the next pass while still inside the window.
    again = await _dispatcher(gateway).run(DispatchOptions(), now=NOW + timedelta(minutes=5))
    assert again.fetched == 1


@pytest.mark.asyncio
async def test_missing_phone_becomes_undeliverable(store, seed, gateway):
    _, rid = await _due_six_hour(seed, phone=None)

    stats = await _dispatcher(gateway).run(DispatchOptions(), now=NOW)
    assert stats.skipped == 1
    assert gateway.sent == []
    row = await db.get_reminder(rid)
    assert row["undeliverable"] is True
    assert row["sent"] is False
    assert row["notes"] == "skipped: no recipient"

    again = await _dispatcher(gateway).run(DispatchOptions(), now=NOW)
    assert again.fetched == 0


@pytest.mark.asyncio
async def test_missing_phone_with_mark_sent_policy(store, seed, gateway):
    _, rid = await _due_six_hour(seed, phone="12")
    options = DispatchOptions(undeliverable_policy="mark_sent")

    await _dispatcher(gateway).run(options, now=NOW)
    row = await db.get_reminder(rid)
    assert row["sent"] is True
    assert row["notes"] == "skipped: no recipient"


@pytest.mark.asyncio
async def test_dry_run_previews_without_writes(store, seed, make_gateway):
    _, rid = await _due_six_hour(seed)
    gateway = make_gateway(configured=False)

    options = DispatchOptions(dry_run=True, mark_sent=True, override_to="+15205550123")
    assert options.mark_sent is False
    stats = await _dispatcher(gateway).run(options, now=NOW)

    assert stats.previewed == 1
    assert stats.preview[0].to == "+15205550123"
    assert gateway.sent == []
    row = await db.get_reminder(rid)
    assert row["sent"] is False
    assert row["notes"] is None


@pytest.mark.asyncio
async def test_outside_window_not_fetched(store, seed, gateway):
    await _due_six_hour(seed)
    stats = await _dispatcher(gateway).run(DispatchOptions(), now=NOW + timedelta(minutes=30))
    assert stats.fetched == 0

    ahead = await _dispatcher(gateway).run(
        DispatchOptions(lookahead_minutes=60, dry_run=True), now=NOW - timedelta(minutes=30)
    )
    assert ahead.previewed == 1


@pytest.mark.asyncio
async def test_cancelled_session_and_dead_contact_skipped(store, seed, gateway):
    pid = await seed.contact(phone="6025550100")
    sid = await seed.session(pid, SESSION_AT, cancelled=True)
    await seed.reminder(pid, "session_6h", "session_reminder", NOW, session_id=sid)
    await _due_six_hour(seed, is_dead=True)

    stats = await _dispatcher(gateway).run(DispatchOptions(), now=NOW)
    assert stats.fetched == 0


@pytest.mark.asyncio
async def test_coach_reminder_goes_to_operator(store, seed, gateway):
    pid = await seed.contact(phone="6025550100", secondary_parent_name="Ana")
    sid = await seed.session(pid, SESSION_AT, players=("Leo", "Mia"))
    await seed.reminder(pid, "coach_session_start", "session_reminder", SESSION_AT, session_id=sid)

    options = DispatchOptions(coach_confirmations=False)
    stats = await _dispatcher(gateway).run(options, now=SESSION_AT + timedelta(minutes=1))
    assert stats.sent == 1
    [(to, body)] = gateway.sent
    assert to == "+16025550199"
    assert "Leo and Mia with Maria Lopez and Ana starts now" in body


@pytest.mark.asyncio
async def test_missing_credentials_abort_before_any_reminder(store, seed):
    _, rid = await _due_six_hour(seed)
    dispatcher = _dispatcher(TelnyxGateway(api_key="", from_number=""))

    with pytest.raises(GatewayConfigError):
        await dispatcher.run(DispatchOptions(), now=NOW)
    assert (await db.get_reminder(rid))["notes"] is None


@pytest.mark.asyncio
async def test_parent_reminders_send_without_operator_number(store, seed, gateway, monkeypatch):
    monkeypatch.setattr(settings, "COACH_PHONE_NUMBER", None)
    _, rid = await _due_six_hour(seed)
    dispatcher = Dispatcher(gateway=gateway, links=LinkBuilder(), zone="America/Phoenix")

    stats = await dispatcher.run(DispatchOptions(coach_confirmations=False), now=NOW)
    assert (stats.sent, stats.failed, stats.skipped) == (1, 0, 0)
    assert [to for to, _ in gateway.sent] == ["+16025550100"]
    assert (await db.get_reminder(rid))["notes"] == "sent:msg-1:queued"


@pytest.mark.asyncio
async def test_confirmation_skipped_when_operator_number_invalid(store, seed, gateway):
    _, rid = await _due_six_hour(seed)
    dispatcher = Dispatcher(
        gateway=gateway, links=LinkBuilder(), coach_phone="call me", zone="America/Phoenix"
    )

    stats = await dispatcher.run(DispatchOptions(coach_confirmations=True), now=NOW)
    assert stats.sent == 1
    assert len(gateway.sent) == 1
    row = await db.get_reminder(rid)
    assert row["sent"] is True
    assert row["notes"] == "sent:msg-1:queued | coach-notify-skipped:no operator number"


@pytest.mark.asyncio
async def test_coach_reminder_without_operator_number_is_skipped(store, seed, gateway):
    pid = await seed.contact(phone="6025550100")
    sid = await seed.session(pid, SESSION_AT, players=("Leo",))
    rid = await seed.reminder(
        pid, "coach_session_start", "session_reminder", SESSION_AT, session_id=sid
    )
    dispatcher = Dispatcher(
        gateway=gateway, links=LinkBuilder(), coach_phone="", zone="America/Phoenix"
    )

    stats = await dispatcher.run(
        DispatchOptions(coach_confirmations=False), now=SESSION_AT + timedelta(minutes=1)
    )
    assert (stats.sent, stats.skipped) == (0, 1)
    assert gateway.sent == []
    row = await db.get_reminder(rid)
    assert row["undeliverable"] is True
    assert row["notes"] == "skipped: no operator number"


@pytest.mark.asyncio
async def test_batch_continues_past_failed_and_skipped_reminders(store, seed, make_gateway):
    gateway = make_gateway(fail_for={"+16025550111"})
    _, failing = await _due_six_hour(seed, phone="602-555-0111")

    missing = await seed.contact(name="No Phone", phone=None)
    missing_sid = await seed.session(missing, SESSION_AT)
    skipped = await seed.reminder(
        missing, "session_6h", "session_reminder", SESSION_AT - timedelta(hours=6), session_id=missing_sid
    )

    _, delivered = await _due_six_hour(seed, phone="602-555-0100")

    options = DispatchOptions(coach_confirmations=False)
    stats = await _dispatcher(gateway).run(options, now=NOW)
    assert (stats.fetched, stats.sent, stats.failed, stats.skipped) == (3, 1, 1, 1)

    assert (await db.get_reminder(failing))["notes"] == "failed:unreachable"
    assert (await db.get_reminder(failing))["sent"] is False
    assert (await db.get_reminder(skipped))["notes"] == "skipped: no recipient"
    row = await db.get_reminder(delivered)
    assert row["sent"] is True
    assert row["notes"].startswith("sent:msg-")


def test_default_options_ignore_unset_overrides():
    options = default_options(batch_size=None, dry_run=True, reminder_types=["session_6h"])
    assert options.dry_run and not options.mark_sent
    assert options.batch_size >= 1
    assert [t.value for t in options.reminder_types] == ["session_6h"]
