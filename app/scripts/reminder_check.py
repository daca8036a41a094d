"""One-shot reconciliation pass for external schedulers.

Run once a day (09:00 Arizona = 16:00 UTC):
    python -m app.scripts.reminder_check
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from app.services.reconciliation import run_reconciliation
from config import settings
import db

_LOGGER = logging.getLogger(__name__)


async def main() -> None:
    try:
        report = await run_reconciliation()
    finally:
        await db.dispose_engine()
    print(json.dumps(report.model_dump(mode="json"), indent=2))


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=settings.LOG_LEVEL)
    _LOGGER.info("[CRON] reminder_check: job started")
    try:
        asyncio.run(main())
        _LOGGER.info("[CRON] reminder_check: job completed")
    except Exception:
        _LOGGER.exception("[CRON] reminder_check: job failed")
        sys.exit(1)
