from contextlib import asynccontextmanager

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from smart_digest.api import digests
from smart_digest.config import get_settings
from smart_digest.database import dispose_engine, get_engine, init_db
from smart_digest.logging_config import configure_logging
from smart_digest.services.digest_gatherer import HttpContentGatherer
from smart_digest.services.digest_mailer import DigestMailer
from smart_digest.services.digest_scheduler import SmartDigestScheduler
from smart_digest.services.digest_store import DigestStore
from smart_digest.services.events import MetricsListener, RedisEventListener

# Configure structured logging
configure_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()


def build_digest_scheduler(store: DigestStore, scheduler: AsyncIOScheduler | None = None) -> SmartDigestScheduler:
    """Wire the production collaborators into one scheduler instance."""
    listeners = [MetricsListener()]
    if settings.redis_url:
        listeners.append(RedisEventListener())
    return SmartDigestScheduler(
        store=store,
        gatherer=HttpContentGatherer(),
        sender=DigestMailer(),
        settings=settings,
        scheduler=scheduler,
        listeners=listeners,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Initialize database
    await init_db()
    logger.info("Database initialized")

    aps_scheduler = AsyncIOScheduler(timezone="UTC")
    store = DigestStore()
    digest_scheduler = build_digest_scheduler(store, aps_scheduler)
    app.state.digest_store = store
    app.state.digest_scheduler = digest_scheduler

    if settings.scheduler_enabled:
        aps_scheduler.start()
        digest_scheduler.start()
        logger.info("Smart digest scheduler started")
    else:
        logger.info("Scheduler disabled - digests only sent on demand")

    yield

    # Shutdown: let an in-flight pass finish before tearing down
    await digest_scheduler.shutdown()
    if aps_scheduler.running:
        aps_scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down")
    await dispose_engine()
    logger.info("Shutting down...")


app = FastAPI(
    title="Smart Digest Scheduler",
    description="Adaptive multi-cadence digest scheduling and delivery",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.app_env == "production" else "/docs",
    redoc_url=None if settings.app_env == "production" else "/redoc",
    openapi_url=None if settings.app_env == "production" else "/openapi.json",
)

# Prometheus metrics
if settings.prometheus_enabled:
    from prometheus_fastapi_instrumentator import Instrumentator

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/metrics"],
    ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

# Include routers
app.include_router(digests.router, prefix="/api/digest", tags=["digests"])
app.include_router(digests.admin_router, prefix="/api/admin/digest", tags=["digest-admin"])


@app.get("/health")
async def health():
    """Health check endpoint that verifies database connectivity."""
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError, ConnectionError, TimeoutError) as e:
        logger.warning(f"Health check failed: {type(e).__name__}: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected"}
        )

    scheduler = getattr(app.state, "digest_scheduler", None)
    return {
        "status": "healthy",
        "database": "connected",
        "scheduler": "running" if scheduler and scheduler.is_started else "stopped",
    }
