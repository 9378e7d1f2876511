"""
tests/helpers.py

Builders shared by the measure engine tests.

Everything runs in-process: table data comes from InMemoryTableSource and
"today" is pinned so month-relative behaviour is deterministic.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from app.config import EngineSettings
from app.connectors.in_memory import InMemoryTableSource, StaticCodeLookup
from app.services.calculation_engine import CalculationEngine
from app.services.calculation_orchestrator import CalculationOrchestrator
from measures.models import (
    AggregationType,
    ComponentSource,
    FilterLogic,
    Measure,
    MeasureComponent,
    MeasureMetadata,
    MeasureSource,
    OperationType,
    TableSource,
    TimeIntelligence,
)
from measures.registry import MeasureRegistry

TODAY = date(2024, 6, 15)

DOC_TYPE_CODES = {
    "Sales": 1,
    "Return": 2,
    "Positive Stock Adjustment": 3,
    "Negative Stock Adjustment": 4,
}


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def table_component(
    table_key: str,
    field_name: str = "quantity",
    *,
    sort_order: int = 0,
    operation: OperationType = OperationType.ADD,
    aggregation: AggregationType | str = AggregationType.SUM,
    filters: FilterLogic | None = None,
    time_intelligence: TimeIntelligence | None = None,
    component_id: str | None = None,
) -> MeasureComponent:
    return component(
        TableSource(table_key=table_key, field_name=field_name),
        sort_order=sort_order,
        operation=operation,
        aggregation=aggregation,
        filters=filters,
        time_intelligence=time_intelligence,
        component_id=component_id or f"{table_key}-{field_name}-{sort_order}",
    )


def measure_component(
    measure_key: str,
    *,
    sort_order: int = 0,
    operation: OperationType = OperationType.ADD,
    time_intelligence: TimeIntelligence | None = None,
) -> MeasureComponent:
    return component(
        MeasureSource(measure_key=measure_key),
        sort_order=sort_order,
        operation=operation,
        time_intelligence=time_intelligence,
        component_id=f"{measure_key}-{sort_order}",
    )


def component(
    source: ComponentSource,
    *,
    sort_order: int = 0,
    operation: OperationType = OperationType.ADD,
    aggregation: AggregationType | str = AggregationType.SUM,
    filters: FilterLogic | None = None,
    time_intelligence: TimeIntelligence | None = None,
    component_id: str | None = None,
) -> MeasureComponent:
    return MeasureComponent(
        id=component_id or f"component-{sort_order}",
        source=source,
        sort_order=sort_order,
        operation=operation,
        aggregation=aggregation,
        filters=filters,
        time_intelligence=time_intelligence,
    )


def make_measure(
    key: str,
    *components: MeasureComponent,
    time_intelligence: TimeIntelligence | None = None,
    **metadata: Any,
) -> Measure:
    return Measure(
        key=key,
        name=metadata.pop("name", key),
        components=tuple(components),
        time_intelligence=time_intelligence,
        metadata=MeasureMetadata(**metadata),
    )


def ratio_measure(key: str, numerator: str, denominator: str, **metadata: Any) -> Measure:
    return make_measure(
        key,
        measure_component(numerator, sort_order=0),
        measure_component(denominator, sort_order=1, operation=OperationType.DIVIDE),
        **metadata,
    )


def build_engine(
    measures: list[Measure],
    tables: dict[str, list[dict[str, Any]]] | None = None,
    *,
    settings: EngineSettings | None = None,
    today: date = TODAY,
) -> tuple[CalculationEngine, InMemoryTableSource]:
    source = InMemoryTableSource(tables or {})
    registry = MeasureRegistry(measures)
    engine = CalculationEngine(
        registry,
        source,
        code_lookup=StaticCodeLookup(DOC_TYPE_CODES),
        settings=settings or EngineSettings(),
        clock=lambda: today,
    )
    return engine, source


def build_orchestrator(
    measures: list[Measure],
    tables: dict[str, list[dict[str, Any]]] | None = None,
    *,
    today: date = TODAY,
) -> tuple[CalculationOrchestrator, InMemoryTableSource]:
    engine, source = build_engine(measures, tables, today=today)
    return CalculationOrchestrator(engine), source
