from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from farewatch import __version__
from farewatch.api import admin, health, monitoring
from farewatch.scheduler import start_scheduler, stop_scheduler
from farewatch.config import get_settings, validate_settings
from farewatch.database import create_tables
from farewatch.errors import CooldownActive, FeatureDisabled, PersistenceError, TriggerRejected, TripNotFound

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Farewatch")

    # Misconfiguration is fatal: let it propagate so the host refuses to start
    validate_settings(settings)

    if settings.database_url.startswith("sqlite"):
        logger.info("SQLite detected - creating tables if needed")
        create_tables()

    if settings.scheduler_enabled:
        try:
            await start_scheduler()
            logger.info("✅ APScheduler started")
        except Exception as e:
            logger.error(f"❌ Scheduler startup failed: {e}")
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    # Application is running
    yield

    # Shutdown
    logger.info("🛑 Shutting down Farewatch")

    try:
        await stop_scheduler()
        logger.info("✅ APScheduler stopped")
    except Exception as e:
        logger.error(f"❌ Shutdown error: {e}")


app = FastAPI(
    title="Farewatch",
    description="Price-drop monitoring for booked flights",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(TriggerRejected)
async def trigger_rejected_handler(request: Request, exc: TriggerRejected):
    if isinstance(exc, CooldownActive):
        return JSONResponse(
            status_code=429,
            content=exc.to_dict(),
            headers={"Retry-After": str(exc.to_dict()["retry_after_seconds"])},
        )
    status_code = 403 if isinstance(exc, FeatureDisabled) else 400
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(TripNotFound)
async def trip_not_found_handler(request: Request, exc: TripNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Storage error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


app.include_router(health.router, tags=["health"])
app.include_router(admin.router, tags=["admin"])
app.include_router(monitoring.router, tags=["monitoring"])


# Health check for monitoring/Docker
@app.get("/ping")
async def ping():
    """Simple ping endpoint for health checks."""
    return {"status": "ok"}
