"""Service layer for the CDC metric stream."""

from app.services.aggregation import MetricAggregationService
from app.services.online_users import OnlineUserTracker
from app.services.pipeline import CDCPipeline, PipelineState

__all__ = ["CDCPipeline", "MetricAggregationService", "OnlineUserTracker", "PipelineState"]
