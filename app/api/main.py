"""
FastAPI application for the CDC metric stream.

Runs the change record pipeline for the lifetime of the process and exposes
its output over WebSockets, plus health, statistics and Prometheus metrics.
"""

import logging
import time
from typing import Any, Dict

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from app.api.dependencies import get_pipeline
from app.config import print_config_summary, settings
from app.logging_config import configure_structured_logging
from core.exceptions import ShutdownError

# Configure logging (structured JSON or standard format)
configure_structured_logging(
    level=settings.LOG_LEVEL,
    enable_json=settings.LOG_JSON_FORMAT,
)
logger = logging.getLogger(__name__)

# API Version
API_VERSION = "1.0.0"

# Track startup time for uptime monitoring
STARTUP_TIME = time.time()

# Create FastAPI app
app = FastAPI(
    title="CDC Metric Stream",
    description="Streams authentication metrics and online sessions derived from database change events",
    version=API_VERSION,
    docs_url="/docs" if settings.ENABLE_DOCS else None,
    redoc_url="/redoc" if settings.ENABLE_DOCS else None,
)

# Add Prometheus metrics instrumentation
# This automatically tracks:
# - Request count by endpoint, method, status code
# - Request duration (latency) histograms
# The pipeline's own counters live in app.api.metrics on the same registry.
instrumentator = Instrumentator(
    should_group_status_codes=False,
    should_ignore_untemplated=True,
    should_respect_env_var=False,
    excluded_handlers=["/metrics"],
)
instrumentator.instrument(app)
instrumentator.expose(app, endpoint="/metrics", tags=["Metrics"])


# Startup event


@app.on_event("startup")
async def startup_event() -> None:
    """Log configuration summary and start the pipeline."""
    if settings.DEBUG:
        print_config_summary()

    logger.info("=" * 60)
    logger.info("CDC Metric Stream Starting")
    logger.info("=" * 60)
    logger.info(f"Server: {settings.HOST}:{settings.PORT}")

    pipeline = get_pipeline()
    await pipeline.start()
    logger.info(f"✓ Pipeline started (source: {pipeline.source.name})")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Stop the pipeline, ending every open stream."""
    logger.info("CDC Metric Stream Shutting Down")

    try:
        await get_pipeline().stop()
        logger.info("✓ Pipeline stopped")
    except ShutdownError as e:
        logger.error(f"✗ Pipeline did not shut down cleanly: {e}")

    logger.info("Shutdown complete")


from app.api import event_routes, health, stream_routes

app.include_router(health.router)
app.include_router(event_routes.router)
app.include_router(stream_routes.router)


@app.get("/", tags=["Root"])
def root() -> Dict[str, Any]:
    """
    Root endpoint with service information and available streams.
    """
    return {
        "name": "CDC Metric Stream",
        "version": API_VERSION,
        "uptime_seconds": round(time.time() - STARTUP_TIME, 2),
        "documentation": "/docs" if settings.ENABLE_DOCS else None,
        "health_check": "/health",
        "streams": [
            f"{stream_routes.router.prefix}/authenticator-events",
            f"{stream_routes.router.prefix}/online-user-events",
            f"{stream_routes.router.prefix}/authenticator-metrics",
            f"{stream_routes.router.prefix}/online-user-metrics",
        ],
    }
