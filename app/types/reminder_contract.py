"""Pydantic models and enums shared by the scheduler, dispatcher and API.

These classes are intentionally framework-agnostic so they can be reused by
workers, API responses, and tests without pulling in FastAPI or database
layers.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ReminderType(str, Enum):
    SESSION_48H = "session_48h"
    SESSION_24H = "session_24h"
    SESSION_6H = "session_6h"
    SESSION_START = "session_start"
    COACH_SESSION_START = "coach_session_start"
    COACH_SESSION_PLUS_60M = "coach_session_plus_60m"
    PARENT_SESSION_PLUS_120M = "parent_session_plus_120m"
    FOLLOW_UP_1D = "follow_up_1d"
    FOLLOW_UP_3D = "follow_up_3d"
    FOLLOW_UP_7D = "follow_up_7d"
    FOLLOW_UP_14D = "follow_up_14d"


class ReminderCategory(str, Enum):
    SESSION_REMINDER = "session_reminder"
    DM_FOLLOW_UP = "dm_follow_up"
    POST_CALL_FOLLOW_UP = "post_call_follow_up"
    POST_FIRST_SESSION_FOLLOW_UP = "post_first_session_follow_up"
    POST_SESSION_FOLLOW_UP = "post_session_follow_up"

    @property
    def is_follow_up(self) -> bool:
        return "follow_up" in self.value


class DmStatus(str, Enum):
    FIRST_MESSAGE = "first_message"
    STARTED_TALKING = "started_talking"
    REQUEST_PHONE_CALL = "request_phone_call"
    WENT_COLD = "went_cold"


class CallOutcome(str, Enum):
    SESSION_BOOKED = "session_booked"
    THINKING_ABOUT_IT = "thinking_about_it"
    UNINTERESTED = "uninterested"
    WENT_COLD = "went_cold"


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "no_show"


class Stage(str, Enum):
    ACTIVE_CUSTOMER_DROPPED = "active_customer_dropped"
    POST_FIRST_SESSION = "post_first_session"
    POST_CALL = "post_call"
    REQUEST_PHONE_CALL = "request_phone_call"
    STARTED_TALKING = "started_talking"
    FIRST_MESSAGE = "first_message"


AnchorZone = Literal["utc", "local"]
UndeliverablePolicy = Literal["undeliverable", "mark_sent", "retry"]

# Session statuses that take a session out of play.
INACTIVE_SESSION_STATUSES = (SessionStatus.CANCELLED.value, SessionStatus.NO_SHOW.value)
# Session statuses whose pre-session reminders are obsolete.
CLOSED_SESSION_STATUSES = (
    SessionStatus.CANCELLED.value,
    SessionStatus.COMPLETED.value,
    SessionStatus.NO_SHOW.value,
)


# ──────────────────────────────
# Stage classification
# ──────────────────────────────


class StageRule(BaseModel):
    """One row of the stage table: what a stage schedules and when."""

    category: ReminderCategory
    threshold_days: int = Field(default=1, ge=0)
    session_based: bool = False
    description: str = ""

    @field_validator("category")
    def _follow_up_only(cls, v):  # noqa: N805
        if not v.is_follow_up:
            raise ValueError("stage rules must schedule a follow-up category")
        return v


class ContactSnapshot(BaseModel):
    """Everything the classifier needs to know about one contact."""

    id: int
    name: str = ""
    dm_status: Optional[DmStatus] = None
    phone_call_booked: bool = False
    call_date_time: Optional[datetime] = None
    call_outcome: Optional[CallOutcome] = None
    is_customer: bool = False
    is_dead: bool = False
    last_activity_at: datetime

    active_first_session_count: int = 0
    earliest_active_first_session_at: Optional[datetime] = None
    active_session_count: int = 0
    last_completed_session_at: Optional[datetime] = None
    pending_follow_ups: int = 0

    def days_inactive(self, now: datetime) -> int:
        return max(0, (now - self.last_activity_at).days)


class StageMatch(BaseModel):
    stage: Stage
    category: ReminderCategory
    inactivity_threshold_days: int
    session_based: bool
    # None means "anchor at the moment of scheduling".
    anchor: Optional[datetime] = None
    anchor_zone: AnchorZone = "utc"


# ──────────────────────────────
# Lifecycle hook
# ──────────────────────────────


class LifecycleState(BaseModel):
    """The lifecycle attributes of a contact before or after a CRUD write."""

    dm_status: Optional[DmStatus] = None
    phone_call_booked: bool = False
    call_date_time: Optional[datetime] = None
    call_outcome: Optional[CallOutcome] = None


class LifecycleChange(BaseModel):
    parent_id: int
    old: LifecycleState
    new: LifecycleState
    # Fields present in the write, changed or not. A call date that is written
    # again with the same value still counts as a resync request.
    fields: List[str] = Field(default_factory=list)

    def touched(self, field: str) -> bool:
        return field in self.fields


# ──────────────────────────────
# Messaging gateway
# ──────────────────────────────


class SendResult(BaseModel):
    ok: bool
    provider_reference: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None


class PreparedMessage(BaseModel):
    to: str
    body: str


# ──────────────────────────────
# Dispatcher
# ──────────────────────────────


class DueReminder(BaseModel):
    """A due session reminder joined with the data its template needs."""

    id: int
    parent_id: int
    session_id: Optional[int] = None
    first_session_id: Optional[int] = None
    reminder_type: ReminderType
    due_at: datetime
    parent_name: str
    secondary_parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    session_date: Optional[datetime] = None
    player_names: List[str] = Field(default_factory=list)
    session_number: Optional[int] = None


class DispatchOptions(BaseModel):
    batch_size: int = Field(default=60, ge=1, le=200)
    window_minutes: int = Field(default=15, ge=1, le=120)
    lookahead_minutes: int = Field(default=0, ge=0, le=30 * 24 * 60)
    dry_run: bool = False
    mark_sent: bool = True
    override_to: Optional[str] = None
    parent_id: Optional[int] = None
    session_id: Optional[int] = None
    first_session_id: Optional[int] = None
    reminder_types: List[ReminderType] = Field(default_factory=list)
    undeliverable_policy: UndeliverablePolicy = "undeliverable"
    coach_confirmations: bool = True

    @model_validator(mode="after")
    def _dry_run_never_writes(self):  # noqa: N805
        if self.dry_run:
            self.mark_sent = False
        return self


class PreviewItem(BaseModel):
    id: int
    reminder_type: ReminderType
    due_at: datetime
    to: str


class DispatchStats(BaseModel):
    fetched: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    previewed: int = 0
    preview: List[PreviewItem] = Field(default_factory=list)


# ──────────────────────────────
# Reconciliation
# ──────────────────────────────


class DetectedContact(BaseModel):
    parent_id: int
    name: str
    stage: Stage
    days_inactive: int
    created: int


class ReconcileReport(BaseModel):
    session_reminders_created: int = 0
    follow_up_reminders_created: int = 0
    stale_reminders_deleted: int = 0
    first_sessions_checked: int = 0
    sessions_checked: int = 0
    detected: List[DetectedContact] = Field(default_factory=list)
    pruned: dict[str, int] = Field(default_factory=dict)
