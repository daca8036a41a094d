import os

# In-memory SQLite stands in for Postgres; must be set before the engine exists.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

from datetime import datetime, timezone

import pytest
import pytest_asyncio

import db
from app.types.reminder_contract import SendResult
from db.models import Contact, FirstSession, Player, Reminder, Session, SessionPlayer

UTC = timezone.utc


@pytest_asyncio.fixture
async def store():
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


class FakeGateway:
    """Records outgoing messages; ``fail_with`` makes every send fail, ``fail_for`` only those numbers."""

    def __init__(self, fail_with=None, configured=True, fail_for=()):
        self.sent = []
        self.fail_with = fail_with
        self.fail_for = set(fail_for)
        self.configured = configured

    def ensure_configured(self):
        if not self.configured:
            raise AssertionError("ensure_configured called")

    def send(self, to, body):
        self.sent.append((to, body))
        if self.fail_with:
            return SendResult(ok=False, error=self.fail_with)
        if to in self.fail_for:
            return SendResult(ok=False, error="unreachable")
        return SendResult(ok=True, provider_reference=f"msg-{len(self.sent)}", status="queued")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_gateway():
    return FakeGateway


async def _add(obj):
    async with db.session_scope() as s:
        s.add(obj)
        await s.commit()
        return getattr(obj, "id", None)


@pytest.fixture
def seed():
    class Seed:
        @staticmethod
        async def contact(name="Maria Lopez", last_activity_at=None, **kw):
            return await _add(
                Contact(
                    name=name,
                    last_activity_at=last_activity_at or datetime(2026, 1, 1, tzinfo=UTC),
                    **kw,
                )
            )

        @staticmethod
        async def session(parent_id, session_date, first=False, players=(), **kw):
            model = FirstSession if first else Session
            sid = await _add(model(parent_id=parent_id, session_date=session_date, **kw))
            for player in players:
                pid = await _add(Player(parent_id=parent_id, name=player))
                if not first:
                    await _add(SessionPlayer(session_id=sid, player_id=pid))
            return sid

        @staticmethod
        async def reminder(parent_id, reminder_type, category, due_at, **kw):
            return await _add(
                Reminder(
                    parent_id=parent_id,
                    reminder_type=reminder_type,
                    reminder_category=category,
                    due_at=due_at,
                    **kw,
                )
            )

    return Seed
