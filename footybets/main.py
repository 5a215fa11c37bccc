"""FastAPI application for footybets."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from footybets.config import get_settings
from footybets.database import close_db, init_db
from footybets.routes.api import router as api_router
from footybets.routes.core import router as core_router
from footybets.routes.cron import router as cron_router
from footybets.routes.frames import router as frames_router
from footybets.scheduler import start_scheduler, stop_scheduler
from footybets.security import limiter
from footybets.state import gateway
from footybets.telemetry import init_sentry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking (before FastAPI app creation)
# Only activates if SENTRY_DSN is set in environment
init_sentry()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting footybets...")
    await init_db()
    start_scheduler()

    yield

    # Shutdown
    logger.info("Shutting down footybets...")
    stop_scheduler()
    await gateway.close()
    await close_db()


app = FastAPI(
    title="footybets",
    description="Social Premier League prediction game with gameweek settlement",
    version="1.0.0",
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Include routers
app.include_router(core_router)
app.include_router(api_router)
app.include_router(cron_router)
app.include_router(frames_router)
