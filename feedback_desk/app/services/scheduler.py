from __future__ import annotations

import logging
import threading
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from feedback_desk.app import config as app_config

logger = logging.getLogger(__name__)

_scheduler: BackgroundScheduler | None = None
_lock = threading.RLock()


def start_scheduler(backfill: Callable[[], int]) -> None:
    if not app_config.backfill_schedule_enabled():
        logger.info("Suggestion backfill scheduler disabled via configuration")
        return

    cron_expression = app_config.backfill_schedule_cron()
    timezone = app_config.scheduler_timezone()

    with _lock:
        global _scheduler  # noqa: PLW0602
        if _scheduler is not None:
            return

        scheduler = BackgroundScheduler(timezone=timezone)
        trigger = CronTrigger.from_crontab(cron_expression, timezone=timezone)
        scheduler.add_job(
            _run_backfill,
            trigger=trigger,
            args=[backfill],
            id="suggestion-backfill",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        scheduler.start()
        _scheduler = scheduler
        logger.info("Suggestion backfill scheduled with cron '%s' in timezone %s", cron_expression, timezone)


def shutdown_scheduler() -> None:
    with _lock:
        global _scheduler  # noqa: PLW0602
        if _scheduler is None:
            return
        try:
            _scheduler.shutdown(wait=False)
            logger.info("Suggestion backfill scheduler stopped")
        finally:
            _scheduler = None


def _run_backfill(backfill: Callable[[], int]) -> None:
    try:
        queued = backfill()
        logger.info("Suggestion backfill run completed | queued=%s", queued)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Suggestion backfill run failed: %s", exc)
