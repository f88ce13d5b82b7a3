import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from loguru import logger

from coachkit.api.calendar_feed import router as calendar_feed_router
from coachkit.api.calendar_items import router as calendar_items_router
from coachkit.api.calendar_summary import router as calendar_summary_router
from coachkit.api.provider_issues import router as provider_issues_router
from coachkit.api.strava import router as strava_router
from coachkit.config.settings import settings
from coachkit.core.errors import register_error_handlers
from coachkit.core.logger import setup_logger
from coachkit.db.session import init_db
from coachkit.integrations.strava.scheduler import create_strava_scheduler

setup_logger(level=settings.log_level, log_file=settings.log_file)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Ensure tables exist and run the Strava poll scheduler when enabled."""
    init_db()

    scheduler = None
    if settings.strava_poll_enabled:
        scheduler = create_strava_scheduler(settings.strava_poll_interval_minutes)
        scheduler.start()
        logger.info(f"[SCHEDULER] Started Strava poll (every {settings.strava_poll_interval_minutes} minutes)")
    else:
        logger.info("[SCHEDULER] Strava poll disabled (STRAVA_POLL_ENABLED is false)")

    await asyncio.sleep(0)
    yield

    if scheduler is not None:
        scheduler.shutdown()
        logger.info("[SCHEDULER] Stopped Strava poll")


app = FastAPI(title="CoachKit", lifespan=lifespan)
register_error_handlers(app)

app.include_router(calendar_feed_router)
app.include_router(calendar_summary_router)
app.include_router(calendar_items_router)
app.include_router(strava_router)
app.include_router(provider_issues_router)

logger.info("FastAPI application initialized")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    logger.debug(f"Request: {request.method} {request.url.path}")
    response = await call_next(request)
    logger.debug(f"Response: {response.status_code} for {request.method} {request.url.path}")
    return response
