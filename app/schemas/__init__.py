"""
app/schemas package marker.
"""

from app.schemas.measures import (
    CacheClearResponse,
    DateRangePayload,
    ExecutionContextPayload,
    MeasureBatchRequest,
    MeasureBatchResponse,
    MeasureCatalogEntry,
    MeasurePlanRequest,
    MeasurePlanResponse,
    TimeIntelligencePayload,
)

__all__ = [
    "CacheClearResponse",
    "DateRangePayload",
    "ExecutionContextPayload",
    "MeasureBatchRequest",
    "MeasureBatchResponse",
    "MeasureCatalogEntry",
    "MeasurePlanRequest",
    "MeasurePlanResponse",
    "TimeIntelligencePayload",
]
