"""
FastAPI dependencies for dependency injection.

This module builds the pipeline and services the API endpoints use.
"""

import logging
from functools import lru_cache
from typing import Optional

from app.config import settings
from app.events.hub import get_event_hub, reset_event_hub
from app.services.aggregation import MetricAggregationService
from app.services.pipeline import CDCPipeline
from core.exceptions import SourceError
from infrastructure.sources.base import ChangeRecordSource
from infrastructure.sources.memory import InMemoryChangeSource
from infrastructure.sources.ndjson import NDJSONChangeSource

logger = logging.getLogger(__name__)

_pipeline: Optional[CDCPipeline] = None


def build_source() -> ChangeRecordSource:
    """
    Create the change record source described by settings.

    Returns:
        NDJSONChangeSource if CDC_SOURCE_PATH is set, otherwise an idle
        InMemoryChangeSource.
    """
    if settings.CDC_SOURCE_PATH:
        return NDJSONChangeSource(
            settings.CDC_SOURCE_PATH,
            follow=settings.CDC_SOURCE_FOLLOW,
            poll_interval=settings.CDC_SOURCE_POLL_SECONDS,
        )
    return InMemoryChangeSource()


def _log_source_failure(error: SourceError) -> None:
    logger.critical(f"CDC pipeline terminated by source failure: {error}")


def get_pipeline() -> CDCPipeline:
    """
    Get or create the pipeline singleton.

    Returns:
        The pipeline instance.
    """
    global _pipeline
    if _pipeline is None:
        _pipeline = CDCPipeline(
            build_source(),
            hub=get_event_hub(),
            on_failure=_log_source_failure,
        )
    return _pipeline


def set_pipeline(pipeline: Optional[CDCPipeline]) -> None:
    """Replace the pipeline singleton (None builds a fresh one on next use)."""
    global _pipeline
    if pipeline is None:
        reset_event_hub()
    _pipeline = pipeline


@lru_cache()
def get_aggregation_service() -> MetricAggregationService:
    """
    Get or create the aggregation service singleton.

    Returns:
        The aggregation service instance.
    """
    return MetricAggregationService()
