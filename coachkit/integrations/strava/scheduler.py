from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from coachkit.integrations.strava.sync import poll_all_strava_connections

STRAVA_POLL_JOB_ID = "strava_poll"


def strava_poll_tick() -> None:
    """One scheduled poll. Failures are logged so the job keeps its schedule."""
    try:
        poll_all_strava_connections()
    except Exception as e:
        logger.error(f"[SCHEDULER] Strava poll failed: {e}")


def create_strava_scheduler(interval_minutes: int) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        strava_poll_tick,
        trigger=IntervalTrigger(minutes=interval_minutes),
        id=STRAVA_POLL_JOB_ID,
        name="Strava Poll",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
