"""One-shot dispatcher pass for external schedulers.

Run every 15 minutes (Railway schedule / cron):
    python -m app.scripts.scan_due_reminders
    python -m app.scripts.scan_due_reminders --dry-run --lookahead 180
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from app.services.dispatcher import default_options, dispatch_due_reminders
from config import settings
import db

_LOGGER = logging.getLogger(__name__)


async def main(args: argparse.Namespace) -> int:
    options = default_options(
        batch_size=args.batch_size,
        window_minutes=args.window,
        lookahead_minutes=args.lookahead,
        dry_run=args.dry_run,
        override_to=args.test_to,
        parent_id=args.parent_id,
        reminder_types=args.types.split(",") if args.types else None,
    )
    try:
        stats = await dispatch_due_reminders(options)
    finally:
        await db.dispose_engine()
    print(json.dumps(stats.model_dump(mode="json"), indent=2))
    return 0 if stats.failed == 0 else 2


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Send due session reminders.")
    p.add_argument("--dry-run", action="store_true", help="preview only, write nothing")
    p.add_argument("--batch-size", type=int)
    p.add_argument("--window", type=int, help="catch-up window in minutes")
    p.add_argument("--lookahead", type=int, help="look N minutes ahead instead of behind")
    p.add_argument("--test-to", help="send every message to this number instead")
    p.add_argument("--parent-id", type=int)
    p.add_argument("--types", help="comma separated reminder types")
    return p


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=settings.LOG_LEVEL)
    _LOGGER.info("[CRON] scan_due_reminders: job started")
    try:
        code = asyncio.run(main(_parser().parse_args()))
        _LOGGER.info("[CRON] scan_due_reminders: job completed")
    except Exception:
        _LOGGER.exception("[CRON] scan_due_reminders: job failed")
        code = 1
    sys.exit(code)
