"""Stage classifier: where a quiet contact sits in the funnel.

The per-stage category and inactivity threshold live in a stage table (data,
not code). The default table can be replaced with a JSON file named by
``STAGE_TABLE_FILE``::

    {"post_call": {"category": "post_call_follow_up", "threshold_days": 2}, ...}
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional

from pydantic import ValidationError

from app.errors import StageTableError
from app.types.reminder_contract import (
    CallOutcome,
    ContactSnapshot,
    DmStatus,
    ReminderCategory,
    Stage,
    StageMatch,
    StageRule,
)

_LOGGER = logging.getLogger(__name__)

StageTable = Mapping[Stage, StageRule]

DEFAULT_STAGE_TABLE: dict[Stage, StageRule] = {
    Stage.FIRST_MESSAGE: StageRule(
        category=ReminderCategory.DM_FOLLOW_UP,
        threshold_days=1,
        description="Sent first DM, no response",
    ),
    Stage.STARTED_TALKING: StageRule(
        category=ReminderCategory.DM_FOLLOW_UP,
        threshold_days=1,
        description="Was talking, now silent",
    ),
    Stage.REQUEST_PHONE_CALL: StageRule(
        category=ReminderCategory.DM_FOLLOW_UP,
        threshold_days=1,
        description="Requested call, waiting for booking",
    ),
    Stage.POST_CALL: StageRule(
        category=ReminderCategory.POST_CALL_FOLLOW_UP,
        threshold_days=1,
        description="Had call, no booking yet",
    ),
    Stage.POST_FIRST_SESSION: StageRule(
        category=ReminderCategory.POST_FIRST_SESSION_FOLLOW_UP,
        threshold_days=1,
        session_based=True,
        description="First session done, no package bought",
    ),
    Stage.ACTIVE_CUSTOMER_DROPPED: StageRule(
        category=ReminderCategory.POST_SESSION_FOLLOW_UP,
        threshold_days=1,
        session_based=True,
        description="Regular customer, been quiet",
    ),
}

_COLD_OUTCOMES = (CallOutcome.THINKING_ABOUT_IT, CallOutcome.WENT_COLD)


def load_stage_table(path: str | Path) -> dict[Stage, StageRule]:
    """Default table overlaid with the rules in a JSON file."""
    try:
        raw = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise StageTableError(f"cannot read stage table {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise StageTableError("stage table must be a JSON object keyed by stage")

    table = dict(DEFAULT_STAGE_TABLE)
    for key, rule in raw.items():
        try:
            table[Stage(key)] = StageRule.model_validate(rule)
        except (ValidationError, ValueError) as exc:
            raise StageTableError(f"bad stage table entry '{key}': {exc}") from exc
    return table


def _stage_of(contact: ContactSnapshot, now: datetime) -> tuple[Optional[Stage], Optional[datetime]]:
    """First matching rule wins; the most progressed stage is checked first."""
    if contact.is_customer and contact.last_completed_session_at is not None:
        return Stage.ACTIVE_CUSTOMER_DROPPED, contact.last_completed_session_at
    if contact.active_first_session_count > 0 and contact.active_session_count == 0:
        return Stage.POST_FIRST_SESSION, contact.earliest_active_first_session_at
    if contact.call_outcome in _COLD_OUTCOMES:
        return Stage.POST_CALL, contact.call_date_time
    if (
        contact.phone_call_booked
        and contact.call_date_time is not None
        and contact.call_date_time < now
    ):
        return Stage.POST_CALL, contact.call_date_time
    if contact.dm_status == DmStatus.REQUEST_PHONE_CALL:
        return Stage.REQUEST_PHONE_CALL, None
    if contact.dm_status == DmStatus.STARTED_TALKING:
        return Stage.STARTED_TALKING, None
    if contact.dm_status == DmStatus.FIRST_MESSAGE:
        return Stage.FIRST_MESSAGE, None
    return None, None


class StageClassifier:
    def __init__(self, table: Optional[StageTable] = None):
        self.table: StageTable = table if table is not None else DEFAULT_STAGE_TABLE

    @classmethod
    def from_settings(cls, stage_table_file: Optional[str]) -> "StageClassifier":
        if stage_table_file:
            _LOGGER.info("Loading stage table from %s", stage_table_file)
            return cls(load_stage_table(stage_table_file))
        return cls()

    def classify(self, contact: ContactSnapshot, now: datetime) -> Optional[StageMatch]:
        stage, anchor = _stage_of(contact, now)
        if stage is None:
            return None
        rule = self.table.get(stage)
        if rule is None:
            return None
        return StageMatch(
            stage=stage,
            category=rule.category,
            inactivity_threshold_days=rule.threshold_days,
            session_based=rule.session_based,
            anchor=anchor,
            # Call slots are picked in local wall-clock time.
            anchor_zone="local" if stage == Stage.POST_CALL else "utc",
        )

    @staticmethod
    def is_suppressed(match: StageMatch, contact: ContactSnapshot) -> bool:
        """Conversation stages wait until pending follow-ups are done; session stages don't."""
        return not match.session_based and contact.pending_follow_ups > 0

    @staticmethod
    def is_due(match: StageMatch, contact: ContactSnapshot, now: datetime) -> bool:
        return contact.days_inactive(now) >= match.inactivity_threshold_days
