"""
app/services/calculation_orchestrator.py

Batch orchestrator for measure calculations.

Wires MeasureRegistry → dependency levels → CalculationEngine into one
batch run.  Each layer keeps its own responsibility:

    MeasureRegistry     – definitions, dependency graph, levels
    CalculationEngine   – value of one measure, dependency cache
    Orchestrator        – validation, scheduling, failure isolation

Scheduling
----------
Levels run strictly one after another.  All measures of one level start
together (``asyncio.gather``) and the next level starts only once every
one of them has settled, so each measure finds its dependencies already in
the engine's dependency cache.

Failure contract
----------------
- Unknown requested key   → raises MeasureNotFoundError naming every
                            missing key before anything executes
- Dependency cycle        → raises CycleError before anything executes
- Failure of one measure  → logged, recorded as ``math.nan`` under its key;
                            siblings and later levels still run

Only the requested keys are returned; helper measures computed along the
way stay in the cache.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from app.logging_utils import log_event
from app.services.calculation_engine import CalculationEngine
from measures.errors import CircularDependencyError, CycleError, MeasureNotFoundError
from measures.models import ExecutionContext
from measures.registry import DependencyGraph, MeasureRegistry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionPlan:
    """
    Diagnostic view of how a batch would run.

    Attributes
    ----------
    execution_order:
        Topological order over the requested keys and everything they reach.
    levels:
        Groups of mutually independent measures, run one group at a time.
    graph:
        Measure key → keys it depends on directly.
    """

    execution_order: list[str]
    levels: list[list[str]]
    graph: DependencyGraph

    def as_dict(self) -> dict[str, Any]:
        return {
            "execution_order": list(self.execution_order),
            "levels": [list(level) for level in self.levels],
            "graph": {key: sorted(deps) for key, deps in self.graph.items()},
        }


@dataclass(frozen=True)
class BatchRunResult:
    """
    Structured output of one batch run.

    Attributes
    ----------
    values:
        Requested key → value; ``math.nan`` for measures that failed.
    failed:
        Requested key → error message for every failed measure.
    level_count:
        Number of dependency levels executed.
    elapsed_seconds:
        Wall-clock duration of the run.
    """

    values: dict[str, float]
    failed: dict[str, str] = field(default_factory=dict)
    level_count: int = 0
    elapsed_seconds: float = 0.0

    @property
    def has_errors(self) -> bool:
        return bool(self.failed)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class CalculationOrchestrator:
    """
    Runs batches of measures with dependency-aware scheduling.

    The orchestrator holds no state of its own; the dependency cache lives
    on the engine it wraps.
    """

    def __init__(self, engine: CalculationEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> CalculationEngine:
        return self._engine

    @property
    def registry(self) -> MeasureRegistry:
        return self._engine.registry

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute_batch(
        self,
        measure_keys: Sequence[str],
        filters: Mapping[str, Any] | None = None,
        context: ExecutionContext | None = None,
    ) -> dict[str, float]:
        """
        Calculate every key of *measure_keys* for one ``(filters, context)`` pair.

        Raises
        ------
        MeasureNotFoundError
            Naming every requested key that is not registered.
        CircularDependencyError
            If the requested measures form a dependency cycle.
        """
        result = await self.run(measure_keys, filters, context)
        return result.values

    async def execute_measure(
        self,
        measure_key: str,
        filters: Mapping[str, Any] | None = None,
        context: ExecutionContext | None = None,
    ) -> float:
        values = await self.execute_batch([measure_key], filters, context)
        return values[measure_key]

    async def run(
        self,
        measure_keys: Sequence[str],
        filters: Mapping[str, Any] | None = None,
        context: ExecutionContext | None = None,
    ) -> BatchRunResult:
        """
        Execute a batch and return values together with failure details.

        Steps
        -----
        1. De-duplicate the requested keys, keeping their order.
        2. Validate that every key is registered.
        3. Single key: execute it directly.
           Several keys: build the dependency graph, order it, group it
           into levels and execute the levels one after another.
        4. Restrict the output to the requested keys.
        """
        started = time.monotonic()
        filters = dict(filters or {})
        context = context or ExecutionContext()
        requested = list(dict.fromkeys(measure_keys))

        if not requested:
            return BatchRunResult(values={})

        missing = self.registry.missing(requested)
        if missing:
            logger.error("Batch rejected; unregistered measures: %s", ", ".join(missing))
            raise MeasureNotFoundError(missing)

        log_event(
            logger,
            logging.INFO,
            "measure_batch_started",
            measures=requested,
            context=context.describe(),
        )

        failed: dict[str, str] = {}
        if len(requested) == 1:
            key = requested[0]
            cycle = self.registry.find_cycle(key)
            if cycle:
                raise CycleError(cycle)
            value = await self._execute_isolated(key, filters, context, failed, reraise_cycles=True)
            values = {key: value}
            level_count = 1
        else:
            plan = self.get_execution_plan(requested)
            computed: dict[str, float] = {}
            for index, level in enumerate(plan.levels):
                logger.debug("Executing level %d measures=%s", index, level)
                outcomes = await asyncio.gather(
                    *(self._execute_isolated(key, filters, context, failed) for key in level)
                )
                computed.update(zip(level, outcomes))
            values = {key: computed[key] for key in requested}
            level_count = len(plan.levels)

        failed = {key: message for key, message in failed.items() if key in values}
        elapsed = time.monotonic() - started
        log_event(
            logger,
            logging.INFO,
            "measure_batch_finished",
            measures=len(requested),
            failed=sorted(failed),
            levels=level_count,
            elapsed_seconds=round(elapsed, 4),
        )
        return BatchRunResult(
            values=values,
            failed=failed,
            level_count=level_count,
            elapsed_seconds=elapsed,
        )

    def get_dependency_graph(self, measure_keys: Iterable[str]) -> DependencyGraph:
        return self.registry.build_dependency_graph(list(dict.fromkeys(measure_keys)))

    def get_execution_plan(self, measure_keys: Iterable[str]) -> ExecutionPlan:
        """
        Return the execution order and levels for *measure_keys*.

        Raises
        ------
        MeasureNotFoundError
            For unregistered requested keys.
        CycleError
            If the dependency graph is cyclic.
        """
        graph = self.get_dependency_graph(measure_keys)
        order = MeasureRegistry.topological_sort(graph)
        levels = MeasureRegistry.group_by_level(graph, order)
        return ExecutionPlan(execution_order=order, levels=levels, graph=graph)

    def clear_cache(self) -> None:
        self._engine.clear_cache()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _execute_isolated(
        self,
        measure_key: str,
        filters: Mapping[str, Any],
        context: ExecutionContext,
        failed: dict[str, str],
        *,
        reraise_cycles: bool = False,
    ) -> float:
        try:
            return await self._engine.execute_cached(measure_key, filters, context)
        except CircularDependencyError as exc:
            if reraise_cycles:
                raise
            failed[measure_key] = str(exc)
            logger.error("Measure %s failed", measure_key, exc_info=True)
            return math.nan
        except Exception as exc:  # noqa: BLE001
            failed[measure_key] = str(exc)
            logger.error("Measure %s failed", measure_key, exc_info=True)
            return math.nan
