"""Send due session reminders and record what happened to each one.

A pass is sequential and best-effort: per-reminder failures become notes on
the reminder and never abort the batch. Missing gateway credentials raise
before any reminder is touched. The operator number is looked up only when a
coach-facing message or a delivery confirmation needs it.

Notes written per reminder:

* ``sent:<provider-ref>:<status>`` plus ``coach-notified:<ref>`` or
  ``coach-notify-failed:<reason>`` (``coach-notify-skipped:no operator number``
  when the operator number is missing or invalid) on success;
* ``failed:<reason>`` when the gateway rejects or errors (stays unsent, retried
  next pass);
* ``skipped: no recipient`` / ``skipped: no operator number`` /
  ``skipped: unsupported reminder type`` for data
  problems, handled per ``undeliverable_policy``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from app.errors import GatewayConfigError
from app.services.templates import (
    MessageContext,
    clip,
    compact_whitespace,
    parent_display_name,
    template_for,
)
from app.types.reminder_contract import (
    DispatchOptions,
    DispatchStats,
    DueReminder,
    PreviewItem,
)
from app.utils.links import LinkBuilder
from app.utils.sms import MessagingGateway, TelnyxGateway, get_coach_phone_number
from app.utils.timeanchor import format_local_stamp, local_day_bounds, utc_now
from config import settings
import db
from db import queries

_LOGGER = logging.getLogger(__name__)

MAX_PREVIEW = 25

_UNRESOLVED = object()


def default_options(**overrides) -> DispatchOptions:
    values = {
        "batch_size": settings.REMINDER_BATCH_SIZE,
        "window_minutes": settings.REMINDER_WINDOW_MINUTES,
        "undeliverable_policy": settings.UNDELIVERABLE_POLICY,
        "coach_confirmations": settings.COACH_CONFIRMATIONS,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return DispatchOptions.model_validate(values)


def default_links() -> LinkBuilder:
    return LinkBuilder(
        settings.PARENT_PROFILE_URL_TEMPLATE,
        settings.PARENT_FEEDBACK_URL_TEMPLATE,
        settings.PARENT_TESTS_URL_TEMPLATE,
    )


class Dispatcher:
    def __init__(
        self,
        gateway: Optional[MessagingGateway] = None,
        links: Optional[LinkBuilder] = None,
        coach_phone: Optional[str] = None,
        zone: Optional[str] = None,
    ):
        self.gateway = gateway or TelnyxGateway()
        self.links = links or default_links()
        self._coach_phone = coach_phone
        self._operator = _UNRESOLVED
        self.zone = zone or settings.LOCAL_TIMEZONE

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    async def run(
        self, options: Optional[DispatchOptions] = None, now: Optional[datetime] = None
    ) -> DispatchStats:
        options = options or default_options()
        now = now or utc_now()

        self._operator = _UNRESOLVED
        if not options.dry_run:
            self.gateway.ensure_configured()

        if options.lookahead_minutes:
            lower = now
            upper = now + timedelta(minutes=options.lookahead_minutes)
        else:
            lower = now - timedelta(minutes=options.window_minutes)
            upper = now

        due = await queries.fetch_due_session_reminders(lower, upper, options)
        stats = DispatchStats(fetched=len(due))
        for row in due:
            await self._process(row, options, stats)

        _LOGGER.info(
            "Dispatch [%s, %s]: fetched=%d sent=%d skipped=%d failed=%d previewed=%d",
            lower.isoformat(), upper.isoformat(), stats.fetched, stats.sent,
            stats.skipped, stats.failed, stats.previewed,
        )
        return stats

    # ------------------------------------------------------------------
    # Per reminder
    # ------------------------------------------------------------------
    async def _same_day_notes(self, parent_id: int, session_date: datetime) -> list[str]:
        start, end = local_day_bounds(session_date, self.zone)
        return await queries.same_day_session_notes(parent_id, start, end)

    async def _process(
        self, row: DueReminder, options: DispatchOptions, stats: DispatchStats
    ) -> None:
        template = template_for(row.reminder_type)
        if template is None:
            await self._skip(row, options, stats, "skipped: unsupported reminder type")
            return
        if row.session_date is None:
            await self._skip(row, options, stats, "skipped: no session date")
            return

        ctx = MessageContext(
            row=row,
            operator_phone=self._operator_phone,
            zone=self.zone,
            links=self.links,
            prefix=settings.MESSAGE_PREFIX,
            suffix=settings.MESSAGE_SUFFIX,
            same_day_notes=self._same_day_notes,
        )
        prepared = await template.build(ctx)
        if prepared is None:
            if template.audience == "coach":
                note = "skipped: no operator number"
            else:
                note = "skipped: no recipient"
            await self._skip(row, options, stats, note)
            return

        destination = options.override_to or prepared.to
        if options.dry_run:
            stats.previewed += 1
            if len(stats.preview) < MAX_PREVIEW:
                stats.preview.append(
                    PreviewItem(
                        id=row.id, reminder_type=row.reminder_type, due_at=row.due_at, to=destination
                    )
                )
            return

        try:
            result = self.gateway.send(destination, prepared.body)
        except Exception as exc:  # noqa: BLE001
            result = None
            reason = str(exc) or exc.__class__.__name__
        else:
            reason = result.error or "unknown"

        if result is None or not result.ok:
            _LOGGER.warning("Reminder %s to %s failed: %s", row.id, destination, reason)
            if options.mark_sent:
                await db.append_reminder_note(row.id, f"failed:{clip(reason, 300)}")
            stats.failed += 1
            return

        notes = [f"sent:{result.provider_reference or 'ok'}:{result.status or 'queued'}"]
        if options.coach_confirmations:
            notes.append(self._confirm_to_coach(row, destination))
        if options.mark_sent:
            await db.mark_reminder_sent(row.id, " | ".join(notes))
        stats.sent += 1

    async def _skip(
        self, row: DueReminder, options: DispatchOptions, stats: DispatchStats, note: str
    ) -> None:
        stats.skipped += 1
        _LOGGER.warning("Reminder %s (%s) %s", row.id, row.reminder_type.value, note)
        if options.dry_run or not options.mark_sent:
            return
        policy = options.undeliverable_policy
        if policy == "mark_sent":
            await db.mark_reminder_sent(row.id, note)
        elif policy == "undeliverable":
            await db.mark_reminder_undeliverable(row.id, note)
        else:
            await db.append_reminder_note(row.id, note)

    def _operator_phone(self) -> Optional[str]:
        """Operator number, resolved on first use within a run; None when unusable."""
        if self._operator is _UNRESOLVED:
            try:
                self._operator = get_coach_phone_number(self._coach_phone)
            except GatewayConfigError as exc:
                _LOGGER.warning("Operator messages disabled: %s", exc)
                self._operator = None
        return self._operator

    def _confirm_to_coach(self, row: DueReminder, destination: str) -> str:
        coach_phone = self._operator_phone()
        if coach_phone is None:
            return "coach-notify-skipped:no operator number"
        body = compact_whitespace(
            f"Auto reminder sent: {row.reminder_type.value} to {destination} "
            f"({parent_display_name(row)}) due {format_local_stamp(row.due_at, self.zone)}. "
            f"Sent at {format_local_stamp(utc_now(), self.zone)}."
        )
        try:
            result = self.gateway.send(coach_phone, body)
        except Exception as exc:  # noqa: BLE001
            return f"coach-notify-exception:{clip(str(exc), 250)}"
        if not result.ok:
            return f"coach-notify-failed:{clip(result.error or 'unknown', 250)}"
        return f"coach-notified:{result.provider_reference or 'ok'}"


async def dispatch_due_reminders(
    options: Optional[DispatchOptions] = None,
    gateway: Optional[MessagingGateway] = None,
    now: Optional[datetime] = None,
) -> DispatchStats:
    return await Dispatcher(gateway=gateway).run(options, now=now)
