from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging
import pytz
import uvicorn

from microgrid.config import settings
from microgrid.database import engine, Base
from microgrid.exceptions import MetricsError
from microgrid.api import readings, metrics, predictions, patterns, system
import microgrid.models  # noqa: F401  registers tables on Base


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create scheduler
SCHEDULE_TZ = pytz.timezone(settings.site_timezone) if settings.site_timezone else pytz.utc
scheduler = AsyncIOScheduler(timezone=SCHEDULE_TZ)


from microgrid.tasks.reconcile import reconcile_predictions_job
from microgrid.tasks.compaction import compact_readings_job

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting application...")
    if settings.create_tables_on_startup:
        Base.metadata.create_all(bind=engine)  # Production: use Alembic migrations

    if settings.scheduler_enabled:
        scheduler.start()

        # Schedule recurring tasks
        scheduler.add_job(
            reconcile_predictions_job,
            'interval',
            minutes=settings.reconcile_interval_minutes,
            id='prediction_reconcile',
            replace_existing=True
        )
        scheduler.add_job(
            compact_readings_job,
            'cron',
            hour=settings.compaction_hour,
            minute=0,
            id='reading_compaction',
            replace_existing=True
        )
        logger.info(
            f"Scheduled prediction reconciliation every {settings.reconcile_interval_minutes} min "
            f"and reading compaction at {settings.compaction_hour:02d}:00"
        )

    yield
    # Shutdown
    logger.info("Shutting down application...")
    if scheduler.running:
        scheduler.shutdown()


app = FastAPI(
    title="Hospital Microgrid Metrics",
    description="Ingest microgrid readings, forecasts and learned patterns; serve dashboard metrics",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MetricsError)
async def metrics_error_handler(request: Request, exc: MetricsError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


# Include routers
app.include_router(readings.router, prefix="/api/readings", tags=["Readings"])
app.include_router(metrics.router, prefix="/api/metrics", tags=["Metrics"])
app.include_router(predictions.router, prefix="/api/predictions", tags=["Predictions"])
app.include_router(patterns.router, prefix="/api/patterns", tags=["Patterns"])
app.include_router(system.router, prefix="/api/system", tags=["System"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {"message": "Hospital Microgrid Metrics API", "docs": "/docs"}


def run():
    uvicorn.run("microgrid.main:app", host=settings.api_host, port=settings.api_port)
