"""
app/services/calculation_engine.py

Single-measure calculation engine.

Evaluates one registered measure for a ``(filters, context)`` pair:

    forwardCover measures  → closing stock + forward months-of-cover projection
    dateLookup measures    → most recent qualifying date in a raw event table
    everything else        → generic component composition

Generic composition
-------------------
1. Measure-level time intelligence is resolved once and becomes the date
   range of every component.
2. Direct measure-sourced dependencies are resolved eagerly through the
   dependency cache; anything else resolves lazily when reached.
3. Components run in ascending ``sort_order``.  The first seeds the result
   and each following component folds in through its operation.

Cycle guard
-----------
Every call receives the chain of measure keys above it as an immutable
tuple and passes an extended copy downwards.  Re-entering a key already
on the chain raises :class:`~measures.errors.CircularDependencyError` with
the full chain.

Dependency cache
----------------
Values are cached per ``(measure key, filters, context)`` on the engine
instance and only removed by :meth:`CalculationEngine.clear_cache`.
Writes are idempotent, so measures running concurrently may share it.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from datetime import date, datetime, timezone
from typing import Any

from app.config import EngineSettings, get_engine_settings
from app.connectors.base import CategoricalCodeLookup, TableDataSource
from app.services.table_executor import TableComponentExecutor
from measures.errors import CircularDependencyError, InvalidComponentSourceError, MeasureNotFoundError
from measures.filters import FilterEvaluator
from measures.models import (
    CalculationType,
    ComponentSource,
    CompositionStrategy,
    ConditionalRule,
    ConditionalSource,
    ExecutionContext,
    Measure,
    MeasureComponent,
    MeasureSource,
    OperationType,
    TableSource,
    freeze,
)
from measures.months_cover import project_months_cover
from measures.registry import MeasureRegistry
from measures.time_intelligence import add_months, coerce_date, reference_date, resolve_time_intelligence

logger = logging.getLogger(__name__)

CacheKey = tuple[str, Any, Any]


# ---------------------------------------------------------------------------
# Dependency cache
# ---------------------------------------------------------------------------


class DependencyCache:
    """
    Measure values keyed by ``(measure key, filters, context)``.

    Entries never expire; :meth:`clear` drops everything.
    """

    def __init__(self) -> None:
        self._values: dict[CacheKey, float] = {}

    @staticmethod
    def key(measure_key: str, filters: Mapping[str, Any], context: ExecutionContext) -> CacheKey:
        return (measure_key, freeze(filters), context.cache_key())

    def get(self, measure_key: str, filters: Mapping[str, Any], context: ExecutionContext) -> float | None:
        return self._values.get(self.key(measure_key, filters, context))

    def set(self, measure_key: str, filters: Mapping[str, Any], context: ExecutionContext, value: float) -> None:
        self._values[self.key(measure_key, filters, context)] = value

    def clear(self) -> None:
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)


# ---------------------------------------------------------------------------
# Pure composition helpers
# ---------------------------------------------------------------------------


def is_usable(value: float | None) -> bool:
    """``True`` for a finite, non-zero number."""
    return value is not None and math.isfinite(value) and value != 0


def apply_operation(result: float, value: float, operation: OperationType) -> float:
    """Fold *value* into the running *result*."""
    if operation is OperationType.SUBTRACT:
        return result - value
    if operation is OperationType.MULTIPLY:
        return result * value
    if operation is OperationType.DIVIDE:
        return result / value if value != 0 else 0.0
    if operation is OperationType.FALLBACK:
        return result if is_usable(result) else value
    return result + value


def apply_percentage(current: float, baseline: float, strategy: CompositionStrategy) -> float:
    """Percentage change or ratio of *current* against *baseline*; 0 when the baseline is unusable."""
    if not is_usable(baseline):
        return 0.0
    if strategy is CompositionStrategy.PERCENTAGE_CHANGE:
        return (current - baseline) / baseline
    return current / baseline


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class CalculationEngine:
    """
    Evaluates registered measures against a table data source.

    Parameters
    ----------
    registry:
        Measure definitions.
    source:
        Table data source for table-sourced components.
    code_lookup:
        Document-type name → code translation.
    settings:
        Engine settings; read from the environment when omitted.
    clock:
        Returns today's date.  Used for conditional month rules and as the
        fallback reference date.
    """

    def __init__(
        self,
        registry: MeasureRegistry,
        source: TableDataSource,
        *,
        code_lookup: CategoricalCodeLookup | None = None,
        settings: EngineSettings | None = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self._registry = registry
        self._settings = settings or get_engine_settings()
        self._clock = clock
        self._cache = DependencyCache()
        self._evaluator = FilterEvaluator(
            code_lookup,
            doc_type_field=self._settings.doc_type_field,
            case_insensitive_fields=self._settings.case_insensitive_fields,
        )
        self._tables = TableComponentExecutor(source, self._evaluator, self._settings)

    @property
    def registry(self) -> MeasureRegistry:
        return self._registry

    @property
    def cache(self) -> DependencyCache:
        return self._cache

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute_measure(
        self,
        measure_key: str,
        filters: Mapping[str, Any] | None = None,
        context: ExecutionContext | None = None,
        visited: tuple[str, ...] = (),
    ) -> float:
        """
        Calculate *measure_key* for *filters* and *context*.

        Raises
        ------
        CircularDependencyError
            If *measure_key* is already on the *visited* chain.
        MeasureNotFoundError
            If *measure_key* (or a dependency it reaches) is not registered.
        """
        filters = dict(filters or {})
        context = context or ExecutionContext()

        if measure_key in visited:
            raise CircularDependencyError((*visited, measure_key))
        chain = (*visited, measure_key)

        measure = self._registry.get(measure_key)
        if measure is None:
            raise MeasureNotFoundError([measure_key])

        logger.debug("Executing measure %s chain=%s context=%s", measure_key, " -> ".join(chain), context.describe())

        meta = measure.metadata
        if meta.calculation_type is CalculationType.FORWARD_COVER:
            closing_stock = await self.execute_cached(meta.stock_measure, filters, context, chain)
            return await self.calculate_months_cover(
                closing_stock,
                filters,
                context,
                visited=chain,
                issuance_measure=meta.issuance_measure,
            )

        if meta.calculation_type is CalculationType.DATE_LOOKUP:
            found = await self.execute_date_lookup(measure_key, filters, context)
            if found is None:
                return 0.0
            return datetime(found.year, found.month, found.day, tzinfo=timezone.utc).timestamp() * 1000.0

        return await self._compose(measure, filters, context, chain)

    async def execute_cached(
        self,
        measure_key: str,
        filters: Mapping[str, Any],
        context: ExecutionContext,
        visited: tuple[str, ...] = (),
    ) -> float:
        """Return the cached value of *measure_key*, calculating and caching it on a miss."""
        cached = self._cache.get(measure_key, filters, context)
        if cached is not None:
            return cached
        value = await self.execute_measure(measure_key, filters, context, visited)
        self._cache.set(measure_key, filters, context, value)
        return value

    async def resolve_dependencies(
        self,
        measure_key: str,
        filters: Mapping[str, Any],
        context: ExecutionContext,
        visited: tuple[str, ...] = (),
    ) -> dict[str, float]:
        """
        Resolve the direct measure dependencies of *measure_key*.

        Only components that read another measure with the measure's own
        context are resolved here; components with their own time
        intelligence, conditional branches and transitive dependencies
        resolve lazily.
        """
        measure = self._registry.get(measure_key)
        if measure is None:
            return {}

        keys: list[str] = []
        for component in measure.components:
            if isinstance(component.source, MeasureSource) and component.time_intelligence is None:
                if component.source.measure_key not in keys:
                    keys.append(component.source.measure_key)

        resolved: dict[str, float] = {}
        for key in keys:
            resolved[key] = await self.execute_cached(key, filters, context, visited)
        return resolved

    async def calculate_months_cover(
        self,
        closing_stock: float,
        filters: Mapping[str, Any],
        context: ExecutionContext,
        *,
        visited: tuple[str, ...] = (),
        issuance_measure: str = "issuesFromStock",
    ) -> float:
        """
        Project months of cover for *closing_stock* from the month after
        the reference month onwards.

        Monthly issuance comes from *issuance_measure*, reused from the
        dependency cache when already known.
        """
        if not closing_stock or not closing_stock > 0:
            return 0.0

        reference = reference_date(context, self._clock())
        issuances: list[float] = []
        for offset in range(1, self._settings.months_cover_horizon + 1):
            month_start = add_months(reference, offset)
            month_context = context.with_period(
                year=month_start.year,
                month=month_start.month,
                day=month_start,
            ).with_time_intelligence(None)
            issuances.append(await self.execute_cached(issuance_measure, filters, month_context, visited))

        cover = project_months_cover(closing_stock, issuances, self._settings.months_cover_default)
        logger.debug("Months cover stock=%s issuances=%s cover=%s", closing_stock, issuances, cover)
        return cover

    async def execute_date_lookup(
        self,
        measure_key: str,
        filters: Mapping[str, Any],
        context: ExecutionContext,
    ) -> date | None:
        """
        Most recent date of the measure's lookup table with a non-zero
        quantity, or ``None``.
        """
        measure = self._registry.require(measure_key)
        meta = measure.metadata

        query = self._tables.query_filters(meta.lookup_table, filters, context)
        records = await self._tables.fetch_records(meta.lookup_table, query, None)

        dated = [(coerce_date(row.get(meta.lookup_date_field)), row) for row in records]
        dated = [(day, row) for day, row in dated if day is not None]
        dated.sort(key=lambda item: item[0], reverse=True)

        for day, row in dated:
            if is_usable(_to_float(row.get(meta.lookup_field))):
                return day
        return None

    def clear_cache(self) -> None:
        size = len(self._cache)
        self._cache.clear()
        logger.info("Dependency cache cleared entries=%d", size)

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    async def _compose(
        self,
        measure: Measure,
        filters: Mapping[str, Any],
        context: ExecutionContext,
        chain: tuple[str, ...],
    ) -> float:
        measure_context = context
        if measure.time_intelligence is not None:
            date_range = resolve_time_intelligence(measure.time_intelligence, context, self._clock())
            if date_range is not None:
                measure_context = context.with_date_range(date_range).with_time_intelligence(None)

        dependencies = await self.resolve_dependencies(measure.key, filters, measure_context, chain)

        result = 0.0
        for index, component in enumerate(measure.sorted_components):
            value = await self._execute_component(
                component, component.source, filters, measure_context, dependencies, chain
            )
            if index == 0:
                result = value
                continue
            result = await self._combine(
                measure, index, component.operation, result, value, filters, measure_context, chain
            )

        logger.debug("Measure %s calculated value=%s components=%d", measure.key, result, len(measure.components))
        return result

    async def _combine(
        self,
        measure: Measure,
        index: int,
        operation: OperationType,
        result: float,
        value: float,
        filters: Mapping[str, Any],
        context: ExecutionContext,
        chain: tuple[str, ...],
    ) -> float:
        strategy = measure.metadata.composition_strategy

        if strategy is CompositionStrategy.STOCK_ISSUANCE and operation is OperationType.MULTIPLY and index == 1:
            if not is_usable(result) and value != 0:
                margin = await self.execute_cached(measure.metadata.margin_measure, filters, context, chain)
                return value * (margin if is_usable(margin) else 1.0)
            return result * value

        if (
            strategy in (CompositionStrategy.PERCENTAGE_CHANGE, CompositionStrategy.PERCENTAGE_RATIO)
            and operation is OperationType.DIVIDE
        ):
            return apply_percentage(result, value, strategy)

        return apply_operation(result, value, operation)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    async def _execute_component(
        self,
        component: MeasureComponent,
        source: ComponentSource,
        filters: Mapping[str, Any],
        context: ExecutionContext,
        dependencies: Mapping[str, float],
        chain: tuple[str, ...],
    ) -> float:
        if isinstance(source, TableSource):
            return await self._tables.execute(component, source, filters, context, self._clock())

        if isinstance(source, MeasureSource):
            if component.time_intelligence is not None:
                narrowed = resolve_time_intelligence(component.time_intelligence, context, self._clock())
                if narrowed is not None:
                    scoped = context.with_date_range(narrowed).with_time_intelligence(None)
                    return await self.execute_cached(source.measure_key, filters, scoped, chain)
            if source.measure_key in dependencies:
                return dependencies[source.measure_key]
            return await self.execute_cached(source.measure_key, filters, context, chain)

        if isinstance(source, ConditionalSource):
            if self._month_rule_matches(source.conditions, context):
                return await self._execute_component(component, source.primary, filters, context, dependencies, chain)
            if source.conditions.has_data:
                value = await self._execute_component(component, source.primary, filters, context, dependencies, chain)
                if is_usable(value):
                    return value
            return await self._execute_component(component, source.fallback, filters, context, dependencies, chain)

        raise InvalidComponentSourceError(
            f"Invalid component source {type(source).__name__!r} in component {component.id!r}"
        )

    def _month_rule_matches(self, rule: ConditionalRule, context: ExecutionContext) -> bool:
        today = self._clock()
        current = (today.year, today.month)
        target = (context.year or today.year, context.month or today.month)

        if rule.is_past_month and target < current:
            return True
        if rule.is_future_month and target > current:
            return True
        if rule.is_current_month and target == current:
            return True
        return False


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
