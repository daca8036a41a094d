import pytest
from pydantic import ValidationError

from app.errors import AnchorError, GatewayConfigError
from app.types.reminder_contract import DispatchStats, PreviewItem, ReconcileReport
from app.workers import reminder as reminder_worker


def test_dispatch_task_passes_overrides(monkeypatch):
    seen = {}

    async def fake_dispatch(options):
        seen["options"] = options
        return DispatchStats(
            fetched=1,
            previewed=1,
            preview=[PreviewItem(id=1, reminder_type="session_6h", due_at="2026-03-10T14:00:00Z", to="+16025550100")],
        )

    monkeypatch.setattr(reminder_worker, "dispatch_due_reminders", fake_dispatch)

    result = reminder_worker.dispatch_due.apply(kwargs={"dry_run": True, "batch_size": 5}).get()
    assert seen["options"].dry_run is True
    assert seen["options"].batch_size == 5
    assert result["previewed"] == 1
    assert "preview" not in result


def test_dispatch_task_does_not_retry_config_errors(monkeypatch):
    async def fake_dispatch(options):
        raise GatewayConfigError("Missing Telnyx settings.")

    monkeypatch.setattr(reminder_worker, "dispatch_due_reminders", fake_dispatch)

    with pytest.raises(GatewayConfigError):
        reminder_worker.dispatch_due.apply().get()


def test_reconcile_task_returns_report(monkeypatch):
    async def fake_reconcile():
        return ReconcileReport(session_reminders_created=3, pruned={"closed_session": 1})

    monkeypatch.setattr(reminder_worker, "run_reconciliation", fake_reconcile)

    result = reminder_worker.reconcile.apply().get()
    assert result["session_reminders_created"] == 3
    assert result["pruned"] == {"closed_session": 1}


def test_beat_schedule():
    from app.celery_app import celery_app

    schedule = celery_app.conf.beat_schedule
    assert schedule["reconcile-reminders"]["task"] == "app.workers.reminder.reconcile"
    assert schedule["dispatch-due-reminders"]["task"] == "app.workers.reminder.dispatch_due"


def test_lifecycle_task_rejects_malformed_payload(monkeypatch):
    calls = []

    async def fake_change(change):
        calls.append(change)

    monkeypatch.setattr(reminder_worker, "on_lifecycle_change", fake_change)

    with pytest.raises(ValidationError):
        reminder_worker.lifecycle_changed.apply(args=({"parent_id": "not-a-number"},)).get()
    assert calls == []


def test_lifecycle_task_does_not_retry_anchor_errors(monkeypatch):
    async def fake_change(change):
        raise AnchorError("Unparseable call_date_time")

    monkeypatch.setattr(reminder_worker, "on_lifecycle_change", fake_change)

    payload = {"parent_id": 7, "old": {}, "new": {}, "fields": ["call_date_time"]}
    with pytest.raises(AnchorError):
        reminder_worker.lifecycle_changed.apply(args=(payload,)).get()
