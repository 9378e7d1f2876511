"""
measures/loader.py

JSON catalog loader for measure definitions.

Catalog format
--------------
::

    {
      "measures": [
        {
          "key": "netSales",
          "name": "Net Sales",
          "components": [
            {"id": "netSales-gross", "source": {"type": "measure", "measureKey": "grossSales"},
             "sortOrder": 0, "operation": "sum"},
            ...
          ],
          "metadata": {"unit": "Tins", "category": "Sales"}
        }
      ]
    }

Field names follow the catalog's camelCase convention and are mapped onto
the snake_case dataclasses in :mod:`measures.models`.

Derived metadata
----------------
``compositionStrategy`` and ``calculationType`` are resolved here, once,
when a definition omits them:

* unit ``Percentage`` → ``percentageChange`` when the category is
  ``Growth`` or the name mentions "growth", otherwise ``percentageRatio``;
* legacy catalogs without flags get ``stockIssuance`` for
  ``issuesFromStock`` and ``forwardCover`` for ``monthsCover``.

The engine only ever reads the resolved enum values.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import date
from pathlib import Path
from typing import Any

from measures.errors import CatalogLoadError, InvalidComponentSourceError
from measures.models import (
    AggregationType,
    CalculationType,
    ComponentSource,
    CompositionStrategy,
    ConditionalRule,
    ConditionalSource,
    FilterCondition,
    FilterLogic,
    FilterLogicType,
    FilterOperator,
    Measure,
    MeasureComponent,
    MeasureMetadata,
    MeasureSource,
    MeasureThreshold,
    OperationType,
    TableSource,
    TimeIntelligence,
    TimeIntelligenceType,
)
from measures.registry import MeasureRegistry

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "catalog.json"

_CALCULATION_TYPE_ALIASES = {
    "forwardLooking": CalculationType.FORWARD_COVER,
}

_LEGACY_STRATEGIES = {
    "issuesFromStock": CompositionStrategy.STOCK_ISSUANCE,
}

_LEGACY_CALCULATION_TYPES = {
    "monthsCover": CalculationType.FORWARD_COVER,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_measure_catalog(path: str | Path = DEFAULT_CATALOG_PATH) -> list[Measure]:
    """
    Load and parse every measure in the catalog at *path*.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    CatalogLoadError
        If the file is not valid JSON or has no ``measures`` list.
    InvalidComponentSourceError
        If a component declares an unknown source type.
    """
    catalog_path = Path(path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"Measure catalog not found: {catalog_path}")

    try:
        raw = json.loads(catalog_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CatalogLoadError(f"Invalid measure catalog {catalog_path}: {exc}") from exc

    entries = raw.get("measures") if isinstance(raw, Mapping) else raw
    if not isinstance(entries, list):
        raise CatalogLoadError("Invalid measure catalog: 'measures' must be a list.")

    measures = parse_measures(entries)
    logger.info("Loaded %d measures from %s", len(measures), catalog_path)
    return measures


def load_default_registry(path: str | Path | None = None, *, strict: bool = True) -> MeasureRegistry:
    """Build a registry from the catalog at *path* (bundled catalog by default)."""
    registry = MeasureRegistry()
    registry.register_all(load_measure_catalog(path or DEFAULT_CATALOG_PATH), strict=strict)
    return registry


def parse_measures(entries: Iterable[Any]) -> list[Measure]:
    measures: list[Measure] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise CatalogLoadError(f"Invalid measure catalog: entry {index} is not an object.")
        measures.append(parse_measure(entry))
    return measures


def parse_measure(raw: Mapping[str, Any]) -> Measure:
    """Parse one catalog entry into a :class:`Measure`."""
    key = str(raw.get("key", "")).strip()
    name = str(raw.get("name", "") or key)
    components = raw.get("components") or []
    if not isinstance(components, list):
        raise CatalogLoadError(f"Measure {key!r}: 'components' must be a list.")

    return Measure(
        key=key,
        name=name,
        description=_optional_str(raw.get("description")),
        components=tuple(_parse_component(key, c) for c in components),
        time_intelligence=_parse_time_intelligence(raw.get("timeIntelligence")),
        metadata=_parse_metadata(key, name, raw.get("metadata") or {}),
    )


def derive_composition_strategy(key: str, name: str, unit: str | None, category: str | None) -> CompositionStrategy:
    """Composition strategy for a definition that does not declare one."""
    if unit == "Percentage":
        if category == "Growth" or "growth" in name.lower():
            return CompositionStrategy.PERCENTAGE_CHANGE
        return CompositionStrategy.PERCENTAGE_RATIO
    return _LEGACY_STRATEGIES.get(key, CompositionStrategy.STANDARD)


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


def _parse_component(measure_key: str, raw: Any) -> MeasureComponent:
    if not isinstance(raw, Mapping):
        raise CatalogLoadError(f"Measure {measure_key!r}: component must be an object.")

    sort_order = raw.get("sortOrder", 0)
    try:
        sort_order = int(sort_order)
    except (TypeError, ValueError) as exc:
        raise CatalogLoadError(f"Measure {measure_key!r}: sortOrder must be an integer.") from exc

    return MeasureComponent(
        id=str(raw.get("id", "")),
        name=str(raw.get("name", "")),
        source=_parse_source(measure_key, raw.get("source")),
        sort_order=sort_order,
        operation=_parse_operation(measure_key, raw.get("operation")),
        aggregation=_parse_aggregation(raw.get("aggregation")),
        filters=_parse_filter_logic(raw.get("filters")),
        time_intelligence=_parse_time_intelligence(raw.get("timeIntelligence")),
    )


def _parse_source(measure_key: str, raw: Any) -> ComponentSource:
    if not isinstance(raw, Mapping):
        raise InvalidComponentSourceError(f"Measure {measure_key!r}: component source must be an object.")

    source_type = raw.get("type")
    if source_type == "table":
        field_name = raw.get("fieldName") or raw.get("quantityField") or "quantity"
        return TableSource(table_key=str(raw.get("tableKey", "")), field_name=str(field_name))
    if source_type == "measure":
        return MeasureSource(measure_key=str(raw.get("measureKey", "")))
    if source_type == "conditional":
        conditions = raw.get("conditions") or {}
        return ConditionalSource(
            conditions=ConditionalRule(
                has_data=conditions.get("hasData"),
                is_past_month=conditions.get("isPastMonth"),
                is_future_month=conditions.get("isFutureMonth"),
                is_current_month=conditions.get("isCurrentMonth"),
            ),
            primary=_parse_source(measure_key, raw.get("primarySource")),
            fallback=_parse_source(measure_key, raw.get("fallbackSource")),
        )
    raise InvalidComponentSourceError(
        f"Measure {measure_key!r}: invalid component source type {source_type!r}"
    )


def _parse_operation(measure_key: str, raw: Any) -> OperationType:
    if raw is None:
        return OperationType.ADD
    try:
        return OperationType(raw)
    except ValueError:
        logger.warning("Measure %r: unknown operation %r treated as add", measure_key, raw)
        return OperationType.ADD


def _parse_aggregation(raw: Any) -> AggregationType | str:
    if raw is None:
        return AggregationType.SUM
    try:
        return AggregationType(raw)
    except ValueError:
        # Kept verbatim; execution falls back to sum with a warning.
        return str(raw)


# ---------------------------------------------------------------------------
# Filters and time intelligence
# ---------------------------------------------------------------------------


def _parse_filter_logic(raw: Any) -> FilterLogic | None:
    if not isinstance(raw, Mapping):
        return None
    logic = str(raw.get("logic", "AND")).upper()
    conditions = tuple(
        _parse_filter_condition(c) for c in raw.get("conditions") or [] if isinstance(c, Mapping)
    )
    return FilterLogic(
        logic=FilterLogicType.OR if logic == "OR" else FilterLogicType.AND,
        conditions=conditions,
    )


def _parse_filter_condition(raw: Mapping[str, Any]) -> FilterCondition:
    operator_raw = raw.get("operator", "equals")
    try:
        operator: FilterOperator | str = FilterOperator(operator_raw)
    except ValueError:
        operator = str(operator_raw)
    values = raw.get("values")
    return FilterCondition(
        column=str(raw.get("column", "")),
        operator=operator,
        value=raw.get("value"),
        values=tuple(values) if isinstance(values, list) else None,
    )


def _parse_time_intelligence(raw: Any) -> TimeIntelligence | None:
    if not isinstance(raw, Mapping):
        return None
    try:
        ti_type = TimeIntelligenceType(str(raw.get("type", "")).lower())
    except ValueError as exc:
        raise CatalogLoadError(f"Unknown time intelligence type {raw.get('type')!r}") from exc

    periods = raw.get("periods")
    return TimeIntelligence(
        type=ti_type,
        periods=int(periods) if periods is not None else None,
        date_field=str(raw.get("dateField") or "date"),
        start_date=_parse_date(raw.get("startDate")),
        end_date=_parse_date(raw.get("endDate")),
    )


def _parse_date(raw: Any) -> date | None:
    if raw in (None, ""):
        return None
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError as exc:
        raise CatalogLoadError(f"Invalid date {raw!r}; expected YYYY-MM-DD") from exc


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def _parse_metadata(key: str, name: str, raw: Mapping[str, Any]) -> MeasureMetadata:
    unit = _optional_str(raw.get("unit"))
    category = _optional_str(raw.get("category"))

    strategy_raw = raw.get("compositionStrategy")
    if strategy_raw is None:
        strategy = derive_composition_strategy(key, name, unit, category)
    else:
        try:
            strategy = CompositionStrategy(strategy_raw)
        except ValueError as exc:
            raise CatalogLoadError(f"Measure {key!r}: unknown compositionStrategy {strategy_raw!r}") from exc

    calc_raw = raw.get("calculationType")
    if calc_raw is None:
        calculation_type = _LEGACY_CALCULATION_TYPES.get(key, CalculationType.STANDARD)
    elif calc_raw in _CALCULATION_TYPE_ALIASES:
        calculation_type = _CALCULATION_TYPE_ALIASES[calc_raw]
    else:
        try:
            calculation_type = CalculationType(calc_raw)
        except ValueError as exc:
            raise CatalogLoadError(f"Measure {key!r}: unknown calculationType {calc_raw!r}") from exc

    defaults = MeasureMetadata()
    return MeasureMetadata(
        unit=unit,
        category=category,
        thresholds=tuple(_parse_threshold(t) for t in raw.get("thresholds") or [] if isinstance(t, Mapping)),
        calculation_type=calculation_type,
        composition_strategy=strategy,
        tags=tuple(str(t) for t in raw.get("tags") or []),
        version=_optional_str(raw.get("version")),
        lookup_table=str(raw.get("lookupTable") or defaults.lookup_table),
        lookup_field=str(raw.get("lookupField") or defaults.lookup_field),
        lookup_date_field=str(raw.get("lookupDateField") or defaults.lookup_date_field),
        stock_measure=str(raw.get("stockMeasure") or defaults.stock_measure),
        issuance_measure=str(raw.get("issuanceMeasure") or defaults.issuance_measure),
        margin_measure=str(raw.get("marginMeasure") or defaults.margin_measure),
    )


def _parse_threshold(raw: Mapping[str, Any]) -> MeasureThreshold:
    operator_raw = raw.get("operator")
    try:
        operator = FilterOperator(operator_raw) if operator_raw else None
    except ValueError:
        operator = None
    return MeasureThreshold(
        key=str(raw.get("key", "")),
        name=str(raw.get("name", "")),
        value=float(raw.get("value", 0)),
        operator=operator,
        description=_optional_str(raw.get("description")),
    )


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
