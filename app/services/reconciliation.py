"""Daily reconciliation sweep and the lifecycle-change trigger.

The sweep is safe to run repeatedly or concurrently: creation goes through the
store's conditional insert and every prune is an idempotent delete.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from app.services.classifier import StageClassifier
from app.services.scheduler import schedule_follow_ups, schedule_session_reminders
from app.types.reminder_contract import (
    CallOutcome,
    DetectedContact,
    LifecycleChange,
    ReconcileReport,
    ReminderCategory,
)
from app.utils.timeanchor import utc_now
from config import settings
import db
from db import queries

_LOGGER = logging.getLogger(__name__)


async def ensure_session_reminders(report: ReconcileReport, now: datetime) -> None:
    for first in (True, False):
        rows = await queries.sessions_missing_reminders(first, now)
        if first:
            report.first_sessions_checked = len(rows)
        else:
            report.sessions_checked = len(rows)
        for row in rows:
            link = {"first_session_id": row["id"]} if first else {"session_id": row["id"]}
            report.session_reminders_created += await schedule_session_reminders(
                row["parent_id"], row["session_date"], **link
            )


async def detect_cold_contacts(
    report: ReconcileReport, now: datetime, classifier: StageClassifier
) -> None:
    for contact in await queries.inactive_contact_snapshots(now):
        match = classifier.classify(contact, now)
        if match is None:
            continue
        if classifier.is_suppressed(match, contact):
            continue
        if not classifier.is_due(match, contact, now):
            continue

        created = await schedule_follow_ups(
            contact.id, match.category, match.anchor, match.anchor_zone, now=now
        )
        if created > 0:
            report.follow_up_reminders_created += created
            report.detected.append(
                DetectedContact(
                    parent_id=contact.id,
                    name=contact.name,
                    stage=match.stage,
                    days_inactive=contact.days_inactive(now),
                    created=created,
                )
            )


async def prune_stale_reminders(report: ReconcileReport, now: datetime) -> None:
    for name in queries.PRUNE_RULES:
        deleted = await queries.run_prune_rule(name, now)
        report.pruned[name] = deleted
        report.stale_reminders_deleted += deleted


async def run_reconciliation(
    now: Optional[datetime] = None,
    classifier: Optional[StageClassifier] = None,
) -> ReconcileReport:
    """Create missing session reminders, detect cold contacts, then prune."""
    now = now or utc_now()
    classifier = classifier or StageClassifier.from_settings(settings.STAGE_TABLE_FILE)
    report = ReconcileReport()

    await ensure_session_reminders(report, now)
    await detect_cold_contacts(report, now, classifier)
    await prune_stale_reminders(report, now)

    _LOGGER.info(
        "Reconciliation: %d session reminders, %d follow-ups (%d contacts), %d pruned",
        report.session_reminders_created,
        report.follow_up_reminders_created,
        len(report.detected),
        report.stale_reminders_deleted,
    )
    return report


# ──────────────────────────────────────────────────────────────────────
# Lifecycle-change trigger
# ──────────────────────────────────────────────────────────────────────

_POST_CALL_OPEN = (None, CallOutcome.THINKING_ABOUT_IT, CallOutcome.WENT_COLD)


async def on_lifecycle_change(change: LifecycleChange, now: Optional[datetime] = None) -> dict:
    """Clear and recreate follow-ups after the CRM writes lifecycle fields.

    Returns the number of reminders deleted and created per category.
    """
    now = now or utc_now()
    old, new = change.old, change.new
    result = {"deleted": {}, "created": {}}
    dm = ReminderCategory.DM_FOLLOW_UP
    post_call = ReminderCategory.POST_CALL_FOLLOW_UP

    def _count(kind: str, category: ReminderCategory, n: int) -> None:
        result[kind][category.value] = result[kind].get(category.value, 0) + n

    # Any DM status change: a contact can go quiet at every stage.
    if new.dm_status is not None and new.dm_status != old.dm_status:
        _count("deleted", dm, await db.delete_unsent(change.parent_id, dm))
        _count("created", dm, await schedule_follow_ups(change.parent_id, dm, now=now))

    # Call booked: past DMs.
    if new.phone_call_booked and not old.phone_call_booked:
        _count("deleted", dm, await db.delete_unsent(change.parent_id, dm))

    resync_post_call = (
        (change.touched("call_outcome") and new.call_outcome != old.call_outcome)
        or change.touched("call_date_time")
        or (change.touched("phone_call_booked") and new.phone_call_booked != old.phone_call_booked)
    )
    if resync_post_call:
        _count("deleted", post_call, await db.delete_unsent(change.parent_id, post_call))
        if new.phone_call_booked and new.call_outcome in _POST_CALL_OPEN:
            _count(
                "created",
                post_call,
                await schedule_follow_ups(
                    change.parent_id,
                    post_call,
                    new.call_date_time or now,
                    "local",
                    now=now,
                ),
            )

    _LOGGER.info("Lifecycle change for parent=%s: %s", change.parent_id, result)
    return result
