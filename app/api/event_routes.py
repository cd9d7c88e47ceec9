"""
Event API endpoints for the change data capture pipeline.

Provides endpoints to monitor pipeline, dispatcher and hub statistics.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.api.dependencies import get_pipeline
from app.services.pipeline import CDCPipeline
from app.websockets.manager import get_connection_manager

router = APIRouter(prefix="/v1/events", tags=["events"])


@router.get("/stats", response_model=Dict[str, Any])
async def get_event_stats(pipeline: CDCPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    """
    Get pipeline statistics.

    Returns:
        - state: Pipeline lifecycle state
        - failure: Source failure message, if any
        - source: Records delivered by the source
        - dispatcher: Records dispatched and dropped by reason
        - hub: Per-channel published/dropped counts and subscribers
        - websockets: Open streaming connections
    """
    stats = pipeline.get_statistics()
    stats["websockets"] = get_connection_manager().get_stats()
    return stats
