"""
app/api/routers/measures_router.py

Measure calculation endpoints.

    GET  /measures              – registered measure catalog
    POST /measures/batch        – calculate a batch for one filters/context pair
    POST /measures/plan         – dependency graph, order and levels of a batch
    POST /measures/cache/clear  – drop every cached dependency value

Failed measures inside a batch do not fail the request: their value is
``null`` and their error message is listed under ``failed``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_orchestrator
from app.schemas.measures import (
    CacheClearResponse,
    MeasureBatchRequest,
    MeasureBatchResponse,
    MeasureCatalogEntry,
    MeasurePlanRequest,
    MeasurePlanResponse,
)
from app.services.calculation_orchestrator import CalculationOrchestrator
from measures.errors import CircularDependencyError, MeasureNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/measures", tags=["measures"])


@router.get("", response_model=list[MeasureCatalogEntry])
def list_measures(
    orchestrator: CalculationOrchestrator = Depends(get_orchestrator),
) -> list[MeasureCatalogEntry]:
    return [MeasureCatalogEntry(**entry) for entry in orchestrator.registry.catalog()]


@router.post("/batch", response_model=MeasureBatchResponse)
async def calculate_batch(
    body: MeasureBatchRequest,
    orchestrator: CalculationOrchestrator = Depends(get_orchestrator),
) -> MeasureBatchResponse:
    """
    Calculate every requested measure for one filters/context pair.

    Raises HTTP 404 naming every unregistered key.
    Raises HTTP 422 when the requested measures form a dependency cycle.
    """
    try:
        result = await orchestrator.run(body.measure_keys, body.filters, body.context.to_context())
    except MeasureNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": str(exc), "missing": exc.keys},
        ) from exc
    except CircularDependencyError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "chain": exc.chain},
        ) from exc

    if result.has_errors:
        logger.warning("Batch finished with %d failed measures: %s", len(result.failed), sorted(result.failed))

    return MeasureBatchResponse(
        values={key: MeasureBatchResponse.clean_value(value) for key, value in result.values.items()},
        failed=result.failed,
        level_count=result.level_count,
        elapsed_seconds=result.elapsed_seconds,
    )


@router.post("/plan", response_model=MeasurePlanResponse)
def plan_batch(
    body: MeasurePlanRequest,
    orchestrator: CalculationOrchestrator = Depends(get_orchestrator),
) -> MeasurePlanResponse:
    try:
        plan = orchestrator.get_execution_plan(body.measure_keys)
    except MeasureNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": str(exc), "missing": exc.keys},
        ) from exc
    except CircularDependencyError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "chain": exc.chain},
        ) from exc
    return MeasurePlanResponse(**plan.as_dict())


@router.post("/cache/clear", response_model=CacheClearResponse)
def clear_cache(
    orchestrator: CalculationOrchestrator = Depends(get_orchestrator),
) -> CacheClearResponse:
    orchestrator.clear_cache()
    return CacheClearResponse()
