"""
Health check and readiness endpoints.

This module provides health monitoring for:
- Liveness probes (basic API health)
- Readiness probes (pipeline running)
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.api.dependencies import get_pipeline
from app.services.pipeline import CDCPipeline, PipelineState

logger = logging.getLogger(__name__)

# Track service start time for uptime calculation
SERVICE_START_TIME = time.time()

router = APIRouter(tags=["health"])


class HealthStatus(BaseModel):
    """Health status response model."""

    status: str
    timestamp: datetime
    uptime_seconds: float
    version: str = "1.0.0"


class ReadinessStatus(BaseModel):
    """Readiness status response model."""

    status: str
    timestamp: datetime
    checks: Dict[str, Any]
    ready: bool


@router.get(
    "/health",
    response_model=HealthStatus,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns basic API health status. Used for liveness probes.",
)
async def health() -> HealthStatus:
    """
    Basic health check endpoint (liveness probe).

    This endpoint always returns 200 OK if the service is running.

    Returns:
        HealthStatus with basic service information
    """
    uptime = time.time() - SERVICE_START_TIME

    return HealthStatus(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=round(uptime, 2),
    )


@router.get(
    "/ready",
    response_model=ReadinessStatus,
    summary="Readiness check",
    description="Returns 200 while the CDC pipeline is running, 503 otherwise.",
)
async def readiness(pipeline: CDCPipeline = Depends(get_pipeline)):
    """
    Readiness check endpoint (readiness probe).

    Returns:
        ReadinessStatus with the pipeline and hub checks
    """
    running = pipeline.state is PipelineState.RUNNING
    checks = {
        "pipeline": {
            "status": pipeline.state.value,
            "healthy": running,
            "failure": str(pipeline.failure) if pipeline.failure else None,
        },
        "hub": {
            "status": "closed" if pipeline.hub.closed else "open",
            "healthy": not pipeline.hub.closed,
        },
    }
    ready = running and not pipeline.hub.closed

    body = ReadinessStatus(
        status="ready" if ready else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
        ready=ready,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(mode="json"),
    )
