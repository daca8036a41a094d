import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status

import db
from app.errors import ReminderEngineError
from app.services.dispatcher import default_options, dispatch_due_reminders
from app.services.reconciliation import on_lifecycle_change, run_reconciliation
from app.types.reminder_contract import (
    DispatchStats,
    LifecycleChange,
    ReconcileReport,
    ReminderType,
)
from config import settings

logging.basicConfig(level=settings.LOG_LEVEL)
_LOGGER = logging.getLogger(__name__)

app = FastAPI()


@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


def require_cron_secret(authorization: Optional[str] = Header(default=None)):
    if not settings.CRON_SECRET or authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")


# --------------------------------------------
# Scheduled jobs (manual triggers)
# --------------------------------------------
@app.post(
    "/v1/cron/reminder-check",
    response_model=ReconcileReport,
    dependencies=[Depends(require_cron_secret)],
)
async def reminder_check():
    try:
        return await run_reconciliation()
    except ReminderEngineError as exc:
        _LOGGER.error("Reminder check failed: %s", exc)
        raise HTTPException(500, str(exc))


@app.post(
    "/v1/cron/send-reminders",
    response_model=DispatchStats,
    dependencies=[Depends(require_cron_secret)],
)
async def send_reminders(
    dry_run: bool = False,
    mark_sent: Optional[bool] = None,
    batch_size: Optional[int] = Query(default=None, ge=1, le=200),
    window_minutes: Optional[int] = Query(default=None, ge=1, le=120),
    lookahead_minutes: Optional[int] = Query(default=None, ge=0),
    test_to: Optional[str] = None,
    parent_id: Optional[int] = None,
    session_id: Optional[int] = None,
    first_session_id: Optional[int] = None,
    types: List[ReminderType] = Query(default=[]),
):
    options = default_options(
        dry_run=dry_run,
        mark_sent=mark_sent,
        batch_size=batch_size,
        window_minutes=window_minutes,
        lookahead_minutes=lookahead_minutes,
        override_to=test_to,
        parent_id=parent_id,
        session_id=session_id,
        first_session_id=first_session_id,
        reminder_types=types,
    )
    try:
        return await dispatch_due_reminders(options)
    except ReminderEngineError as exc:
        _LOGGER.error("Send reminders failed: %s", exc)
        raise HTTPException(500, str(exc))


# --------------------------------------------
# Lifecycle hook (called by the CRM write path)
# --------------------------------------------
@app.post("/v1/contacts/{parent_id}/lifecycle", dependencies=[Depends(require_cron_secret)])
async def contact_lifecycle_changed(parent_id: int, change: LifecycleChange):
    if change.parent_id != parent_id:
        raise HTTPException(400, "parent_id mismatch")
    return await on_lifecycle_change(change)


# --------------------------------------------
# Reminder read access
# --------------------------------------------
@app.get("/v1/reminders")
async def unsent_reminders(parent_id: Optional[int] = None):
    return await db.list_unsent_reminders(parent_id)


@app.post("/v1/reminders/{reminder_id}/mark-sent")
async def reminder_mark_sent(reminder_id: int):
    row = await db.mark_reminder_sent(reminder_id, "manually marked sent")
    if row is None:
        raise HTTPException(404, "Reminder not found")
    return row
