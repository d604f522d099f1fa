"""APScheduler integration for scheduled daily standup generation.

Uses AsyncIOScheduler with CronTrigger to generate a standup for every user
with an active credential.  No-ops gracefully if no cron expression is configured.
"""

import contextlib
import logging
from datetime import UTC, date, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from src.config import get_settings
from src.observability.metrics import SCHEDULED_RUNS_TOTAL
from src.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def run_daily_generation(orchestrator: Orchestrator, day: date | None = None) -> dict[str, int]:
    """Generate today's standup for each active user. One failure never stops the run."""
    day = day or datetime.now(UTC).date()
    counts = {"success": 0, "error": 0}
    for user_id in await orchestrator.active_users():
        try:
            await orchestrator.generate(user_id, day)
            counts["success"] += 1
            SCHEDULED_RUNS_TOTAL.labels(status="success").inc()
        except Exception:
            counts["error"] += 1
            SCHEDULED_RUNS_TOTAL.labels(status="error").inc()
            logger.exception("Scheduled standup generation failed for %s", user_id)
    logger.info(
        "Scheduled generation for %s finished: %d succeeded, %d failed",
        day.isoformat(),
        counts["success"],
        counts["error"],
    )
    return counts


def start_scheduler(orchestrator: Orchestrator) -> bool:
    """Start the APScheduler if a cron expression is configured. Returns whether it started."""
    global _scheduler  # noqa: PLW0603

    settings = get_settings()
    if not settings.standup_schedule_cron:
        logger.info("Standup scheduler disabled (STANDUP_SCHEDULE_CRON not set)")
        return False

    trigger = CronTrigger.from_crontab(settings.standup_schedule_cron, timezone="UTC")
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        run_daily_generation,
        trigger=trigger,
        args=[orchestrator],
        id="daily_standups",
        name="Daily Standup Generation",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info("Standup scheduler started with cron: %s", settings.standup_schedule_cron)
    return True


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Standup scheduler stopped")
        _scheduler = None
