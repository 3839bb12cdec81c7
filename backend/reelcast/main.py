"""FastAPI application entry point"""
import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from reelcast.core.config import settings, EDITED_CLIPS_DIR, TEMP_DIR, UPLOADS_DIR
from reelcast.core.logging import setup_logging
from reelcast.core.middleware import global_exception_handler, security_middleware, setup_cors_middleware
from reelcast.core.otel import initialize_otel, instrument_app, setup_otel_logging
from reelcast.db.redis import get_redis_client
from reelcast.db.session import engine, init_db

from reelcast.api import admin, auth, billing, cron, oauth, plans, social, user, videos

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    for directory in (EDITED_CLIPS_DIR, UPLOADS_DIR, TEMP_DIR):
        directory.mkdir(parents=True, exist_ok=True)

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        from reelcast.tasks.scheduler import scheduler_task
        scheduler = asyncio.create_task(scheduler_task())
    else:
        logger.info("In-process scheduler disabled - relying on the cron endpoint")

    yield

    logger.info("Shutting down...")
    if scheduler:
        scheduler.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler


app = FastAPI(
    title="Reelcast Backend",
    description="Video editing, captioning and social publishing",
    version="1.0.0",
    lifespan=lifespan
)

instrument_app(app, engine)
setup_cors_middleware(app)
app.middleware("http")(security_middleware)
app.add_exception_handler(Exception, global_exception_handler)

app.include_router(auth.router)
app.include_router(oauth.router)
app.include_router(user.router)
app.include_router(social.router)
app.include_router(cron.router)
app.include_router(billing.router)
app.include_router(plans.router)
app.include_router(videos.router)
app.include_router(admin.router)


@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    # Uploads can be large, so keep idle connections open for a while
    config = {
        "host": "0.0.0.0",
        "port": 8000,
        "timeout_keep_alive": 1800,
        "timeout_graceful_shutdown": 30,
        "limit_concurrency": 100,
    }

    if os.getenv("ENVIRONMENT", "development") == "development":
        uvicorn.run("reelcast.main:app", reload=True, **config)
    else:
        uvicorn.run(app, **config)
