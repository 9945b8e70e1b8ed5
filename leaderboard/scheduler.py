# leaderboard/scheduler.py
"""
Registers the leaderboard job on the shared APScheduler instance.

full        -> every day at 00:00 UTC
incremental -> every LEADERBOARD_INTERVAL_MINUTES minutes
"""
import atexit
import logging

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from extensions import scheduler
from leaderboard.aggregator import run_leaderboard_job, FULL, INCREMENTAL

logger = logging.getLogger(__name__)

JOB_ID = "leaderboard"


def _job(app):
    with app.app_context():
        summary = run_leaderboard_job()
        logger.info(f"Scheduled leaderboard run finished: {summary.get('status')}")


def register_leaderboard_job(app):
    strategy = app.config.get("LEADERBOARD_STRATEGY", FULL)

    if strategy == FULL:
        trigger = CronTrigger(hour=0, minute=0, timezone="UTC")
        description = "daily at 00:00 UTC"
    elif strategy == INCREMENTAL:
        minutes = int(app.config.get("LEADERBOARD_INTERVAL_MINUTES", 5))
        trigger = IntervalTrigger(minutes=minutes, timezone="UTC")
        description = f"every {minutes} minutes"
    else:
        raise ValueError(f"Unknown LEADERBOARD_STRATEGY '{strategy}'")

    scheduler.add_job(
        func=_job,
        args=[app],
        trigger=trigger,
        id=JOB_ID,
        name=f"Leaderboard ({strategy})",
        replace_existing=True,
    )
    logger.info(f"Job registered: leaderboard {strategy} ({description})")


def start_scheduler(app):
    """Start background scheduling once per process."""
    if scheduler.running:
        logger.warning("Scheduler already running")
        return

    register_leaderboard_job(app)
    scheduler.start()
    atexit.register(shutdown_scheduler)
    logger.info("Scheduler started")


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
