import pytest
from fastapi.testclient import TestClient

import main
from config import settings


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    return TestClient(main.app)


def test_cron_endpoints_need_the_secret(client):
    assert client.post("/v1/cron/reminder-check").status_code == 401
    resp = client.post("/v1/cron/send-reminders", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_cron_endpoints_locked_when_secret_unset(client, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", None)
    resp = client.post("/v1/cron/reminder-check", headers={"Authorization": "Bearer None"})
    assert resp.status_code == 401


def test_send_reminders_forwards_query_options(client, monkeypatch):
    seen = {}

    async def fake_dispatch(options):
        seen["options"] = options
        return main.DispatchStats(fetched=0)

    monkeypatch.setattr(main, "dispatch_due_reminders", fake_dispatch)
    resp = client.post(
        "/v1/cron/send-reminders?dry_run=true&window_minutes=30&types=session_24h&types=session_6h",
        headers={"Authorization": "Bearer s3cret"},
    )
    assert resp.status_code == 200
    assert resp.json()["fetched"] == 0
    assert seen["options"].dry_run is True
    assert seen["options"].window_minutes == 30
    assert [t.value for t in seen["options"].reminder_types] == ["session_24h", "session_6h"]


def test_lifecycle_hook_rejects_mismatched_parent(client):
    resp = client.post(
        "/v1/contacts/5/lifecycle",
        json={"parent_id": 6, "old": {}, "new": {"dm_status": "first_message"}},
        headers={"Authorization": "Bearer s3cret"},
    )
    assert resp.status_code == 400
