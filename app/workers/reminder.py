"""Celery tasks for the two periodic sweeps.

Tasks are synchronous so they run under Celery's default prefork pool; the
async jobs run via ``asyncio.run``. Both sweeps tolerate duplicate or
overlapping invocations, so ``acks_late`` redelivery is harmless.
"""

from __future__ import annotations

import asyncio
import logging

from app.celery_app import celery_app
from app.errors import ReminderEngineError
from app.services.dispatcher import dispatch_due_reminders, default_options
from app.services.reconciliation import on_lifecycle_change, run_reconciliation
from app.types.reminder_contract import LifecycleChange
import db

_LOGGER = logging.getLogger(__name__)


async def _with_engine(coro):
    try:
        return await coro
    finally:
        # Each asyncio.run gets a fresh loop; pooled connections can't cross it.
        await db.dispose_engine()


@celery_app.task(name="app.workers.reminder.reconcile", bind=True, max_retries=3)
def reconcile(self):  # noqa: D401
    """Ensure session reminders, detect cold contacts, prune stale reminders."""
    try:
        report = asyncio.run(_with_engine(run_reconciliation()))
    except ReminderEngineError:
        _LOGGER.exception("Reconciliation misconfigured")
        raise
    except Exception as exc:  # noqa: BLE001
        raise self.retry(exc=exc, countdown=60)
    return report.model_dump(mode="json")


@celery_app.task(name="app.workers.reminder.dispatch_due", bind=True, max_retries=3)
def dispatch_due(self, **overrides):  # noqa: D401
    """Send session reminders that came due inside the catch-up window."""
    try:
        stats = asyncio.run(_with_engine(dispatch_due_reminders(default_options(**overrides))))
    except ReminderEngineError:
        _LOGGER.exception("Dispatcher misconfigured")
        raise
    except Exception as exc:  # noqa: BLE001
        raise self.retry(exc=exc, countdown=30)
    return stats.model_dump(mode="json", exclude={"preview"})


@celery_app.task(name="app.workers.reminder.lifecycle_changed", bind=True, max_retries=3)
def lifecycle_changed(self, change: dict):  # noqa: D401
    """Queue-side entry for the lifecycle hook when the CRM can't call it inline."""
    # A malformed payload never becomes valid on redelivery.
    parsed = LifecycleChange.model_validate(change)
    try:
        return asyncio.run(_with_engine(on_lifecycle_change(parsed)))
    except ReminderEngineError:
        _LOGGER.exception("Lifecycle change for parent=%s rejected", parsed.parent_id)
        raise
    except Exception as exc:  # noqa: BLE001
        raise self.retry(exc=exc, countdown=30)
