"""
app/schemas/measures.py

Request and response schemas for measure calculation endpoints.
"""

from __future__ import annotations

import datetime as dt
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from measures.models import DateRange, ExecutionContext, TimeIntelligence, TimeIntelligenceType


class DateRangePayload(BaseModel):
    """
    Half-open date range ``[start, end)``.
    """

    model_config = ConfigDict(extra="forbid")

    start: dt.date
    end: dt.date

    @model_validator(mode="after")
    def _check_order(self) -> "DateRangePayload":
        if self.end <= self.start:
            raise ValueError("date_range.end must be after date_range.start")
        return self


class TimeIntelligencePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: TimeIntelligenceType
    periods: int | None = Field(default=None, ge=1)
    date_field: str = "date"
    start_date: dt.date | None = None
    end_date: dt.date | None = None

    def to_model(self) -> TimeIntelligence:
        return TimeIntelligence(
            type=self.type,
            periods=self.periods,
            date_field=self.date_field,
            start_date=self.start_date,
            end_date=self.end_date,
        )


class ExecutionContextPayload(BaseModel):
    """
    Execution context shared by every measure of a request.

    ``extra`` carries further query fields (e.g. ``channel``) forwarded to
    table sources unchanged.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    country_id: str | None = None
    sku_id: str | None = None
    year: int | None = Field(default=None, ge=1900, le=9999)
    month: int | None = Field(default=None, ge=1, le=12)
    date: dt.date | None = None
    date_range: DateRangePayload | None = None
    time_intelligence: TimeIntelligencePayload | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_context(self) -> ExecutionContext:
        return ExecutionContext(
            country_id=self.country_id,
            sku_id=self.sku_id,
            year=self.year,
            month=self.month,
            date=self.date,
            date_range=DateRange(self.date_range.start, self.date_range.end) if self.date_range else None,
            time_intelligence=self.time_intelligence.to_model() if self.time_intelligence else None,
            extra=self.extra,
        )


class MeasureBatchRequest(BaseModel):
    measure_keys: list[str] = Field(default_factory=list)
    filters: dict[str, Any] = Field(default_factory=dict)
    context: ExecutionContextPayload = Field(default_factory=ExecutionContextPayload)


class MeasureBatchResponse(BaseModel):
    """
    API response model for one batch calculation.

    Failed measures have a ``null`` value and are listed under ``failed``.
    """

    values: dict[str, float | None]
    failed: dict[str, str] = Field(default_factory=dict)
    level_count: int = Field(..., ge=0)
    elapsed_seconds: float = Field(..., ge=0.0)

    @staticmethod
    def clean_value(value: float) -> float | None:
        return value if math.isfinite(value) else None


class MeasurePlanRequest(BaseModel):
    measure_keys: list[str] = Field(..., min_length=1)


class MeasurePlanResponse(BaseModel):
    execution_order: list[str]
    levels: list[list[str]]
    graph: dict[str, list[str]]


class MeasureCatalogEntry(BaseModel):
    key: str
    name: str
    description: str | None = None
    component_count: int = Field(..., ge=0)
    category: str | None = None
    unit: str | None = None
    dependencies: list[str] = Field(default_factory=list)


class CacheClearResponse(BaseModel):
    status: str = "cleared"
