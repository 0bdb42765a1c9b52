"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from cropwatch.config import settings
from cropwatch.middleware.error_handler import ErrorHandlerMiddleware
from cropwatch.api.dependencies import OrchestratorDep, get_orchestrator
from cropwatch.api.v1.routers import farms, runs
from cropwatch.infrastructure.imagery_client import get_imagery_client
from cropwatch.infrastructure.messaging_client import get_messaging_client
from cropwatch.infrastructure.vision_client import get_vision_client
from cropwatch.services.application.scheduler import DailyScheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_requests}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Starts the daily trigger when enabled and closes the provider clients
    on shutdown.
    """
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Batch config: batch_size={settings.batch_size}, "
                f"inter_batch_delay={settings.inter_batch_delay_seconds}s, "
                f"freshness_window={settings.freshness_window_hours}h")
    logger.info(f"Rate limit: {settings.rate_limit_requests} requests/minute")

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = DailyScheduler(
            get_orchestrator(),
            hour=settings.schedule_hour,
            minute=settings.schedule_minute,
            timezone_name=settings.schedule_timezone,
        )
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    # Shutdown
    logger.info("Shutting down application...")
    if scheduler is not None:
        await scheduler.stop()
    for client in (get_imagery_client(), get_vision_client(), get_messaging_client()):
        await client.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    description="""
    Vegetation Monitoring API for Agrotech Platform

    This API runs a daily satellite analysis over every registered farm and
    exposes the resulting analyses, alerts and run reports.

    ## Features

    - **NDVI Analysis**: Compute the vegetation index from near infrared and red
      bands, with statistics and a five-zone histogram
    - **AI Findings**: Combine index alerts with findings from a vision provider
      into one deduplicated, prioritized alert list per farm
    - **Batch Runs**: Analyze farms in paced, concurrent batches where one failing
      farm never aborts the run
    - **Notifications**: Message farm contacts and administrators
    - **Rate Limiting**: Protects the API from abuse

    ## Vegetation Zones

    1. Water: NDVI below 0
    2. Bare soil: 0 up to the low threshold
    3. Sparse vegetation: low up to the normal threshold
    4. Moderate vegetation: normal up to the high threshold
    5. Dense vegetation: the high threshold and above
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# Add CORS middleware with configurable origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add global error handling middleware
app.add_middleware(ErrorHandlerMiddleware)

# Include routers
app.include_router(runs.router, prefix="/api/v1")
app.include_router(farms.router, prefix="/api/v1")


@app.get("/", tags=["health"])
async def root():
    """
    Root endpoint for health check.

    Returns:
        Status message
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/health", tags=["health"])
async def health_check(orchestrator: OrchestratorDep):
    """
    Health check endpoint.

    Returns:
        Health status including the batch run state
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "run_state": orchestrator.state.value,
    }
