"""
measures/registry.py

Measure registry and dependency-graph primitives.

The registry is an explicit object (no module-level singleton) so that
tests and tenants can hold independent catalogs side by side.

Graph primitives
----------------
build_dependency_graph(keys)   – transitive closure over measure references
topological_sort(graph)        – dependencies first; raises CycleError
group_by_level(graph, order)   – earliest level strictly after all dependencies

A dependency graph is a plain ``dict[str, frozenset[str]]`` mapping each
measure key to the keys it depends on directly.  It is built per request
and never cached.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from measures.errors import CycleError, MeasureNotFoundError, MeasureValidationError
from measures.models import CalculationType, CompositionStrategy, Measure, MeasureThreshold
from measures.validator import ValidationResult, detect_cycle, validate_all_measures, validate_measure

logger = logging.getLogger(__name__)

DependencyGraph = dict[str, frozenset[str]]


class MeasureRegistry:
    """
    Holds immutable measure definitions keyed by measure key.

    Usage::

        registry = MeasureRegistry(load_measure_catalog(path))
        graph = registry.build_dependency_graph(["monthsCover"])
        order = registry.topological_sort(graph)
        levels = registry.group_by_level(graph, order)
    """

    def __init__(self, measures: Iterable[Measure] | None = None) -> None:
        self._measures: dict[str, Measure] = {}
        if measures is not None:
            self.register_all(measures)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, measure: Measure) -> None:
        """
        Register one measure after structural validation.

        Raises
        ------
        MeasureValidationError
            If the definition is structurally invalid.
        """
        result = validate_measure(measure)
        if not result.valid:
            raise MeasureValidationError(measure.key or "<unnamed>", result.messages())
        if measure.key in self._measures:
            logger.warning("Measure %r re-registered; previous definition replaced", measure.key)
        self._measures[measure.key] = measure

    def register_all(self, measures: Iterable[Measure], *, strict: bool = False) -> int:
        """
        Register a catalog of measures.

        With ``strict=True`` every registered key is re-checked for
        dependency cycles once the whole catalog is in place.

        Raises
        ------
        CycleError
            In strict mode, when the catalog contains a dependency cycle.
        """
        count = 0
        for measure in measures:
            self.register(measure)
            count += 1
        if strict:
            for key in self._measures:
                cycle = self.find_cycle(key)
                if cycle:
                    raise CycleError(cycle)
        logger.debug("Registered %d measures (total=%d)", count, len(self._measures))
        return count

    def clear(self) -> None:
        self._measures.clear()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, key: str) -> Measure | None:
        return self._measures.get(key)

    def require(self, key: str) -> Measure:
        measure = self._measures.get(key)
        if measure is None:
            raise MeasureNotFoundError([key])
        return measure

    def has(self, key: str) -> bool:
        return key in self._measures

    def keys(self) -> list[str]:
        return list(self._measures)

    def all(self) -> list[Measure]:
        return list(self._measures.values())

    def missing(self, keys: Iterable[str]) -> list[str]:
        """Return the unregistered keys of *keys*, de-duplicated in order."""
        result: list[str] = []
        for key in keys:
            if key not in self._measures and key not in result:
                result.append(key)
        return result

    def __contains__(self, key: object) -> bool:
        return key in self._measures

    def __len__(self) -> int:
        return len(self._measures)

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def direct_dependencies(self, key: str) -> list[str]:
        """
        Keys *key* depends on directly.

        Includes component references and the measures implied by the
        measure's calculation type or composition strategy (the latter only
        when registered).
        """
        measure = self._measures.get(key)
        if measure is None:
            return []
        deps = list(measure.direct_measure_keys())
        for implied in _implied_dependencies(measure):
            if implied in self._measures and implied not in deps:
                deps.append(implied)
        return deps

    def find_cycle(self, key: str) -> list[str] | None:
        """Dependency cycle reachable from *key* (implied dependencies included), or ``None``."""
        return detect_cycle(self._measures, key, self.direct_dependencies)

    def transitive_dependencies(self, key: str) -> list[str]:
        """All keys reachable from *key*, excluding *key* itself."""
        seen: list[str] = []
        pending = list(self.direct_dependencies(key))
        while pending:
            dep = pending.pop(0)
            if dep in seen or dep == key:
                continue
            seen.append(dep)
            pending.extend(self.direct_dependencies(dep))
        return seen

    def build_dependency_graph(self, keys: Sequence[str]) -> DependencyGraph:
        """
        Build the dependency graph over *keys* and everything they reach.

        Each key is visited once per call.  Unregistered *requested* keys
        raise immediately; unregistered transitive references are left out
        of the graph so that only the referencing measure fails later.

        Raises
        ------
        MeasureNotFoundError
            Naming every requested key that is not registered.
        """
        missing = self.missing(keys)
        if missing:
            raise MeasureNotFoundError(missing)

        graph: DependencyGraph = {}
        visited: set[str] = set()

        def collect(key: str) -> None:
            if key in visited:
                return
            visited.add(key)
            deps: set[str] = set()
            for dep in self.direct_dependencies(key):
                if dep not in self._measures:
                    logger.warning(
                        "Measure %r references unregistered measure %r; it will fail when executed",
                        key,
                        dep,
                    )
                    continue
                deps.add(dep)
                collect(dep)
            graph[key] = frozenset(deps)

        for key in keys:
            collect(key)
        return graph

    @staticmethod
    def topological_sort(graph: DependencyGraph) -> list[str]:
        """
        Order *graph* so that every key follows all of its dependencies.

        Depth-first search with recursion-stack marking.  Dependencies that
        are not themselves nodes of *graph* are ignored.

        Raises
        ------
        CycleError
            With the full cycle chain, e.g. ``a -> b -> a``.
        """
        order: list[str] = []
        done: set[str] = set()
        stack: list[str] = []
        on_stack: set[str] = set()

        def visit(key: str) -> None:
            if key in on_stack:
                raise CycleError(stack[stack.index(key):] + [key])
            if key in done:
                return
            stack.append(key)
            on_stack.add(key)
            for dep in sorted(graph.get(key, ())):
                if dep in graph:
                    visit(dep)
            stack.pop()
            on_stack.discard(key)
            done.add(key)
            order.append(key)

        for key in graph:
            visit(key)
        return order

    @staticmethod
    def group_by_level(graph: DependencyGraph, order: Sequence[str]) -> list[list[str]]:
        """
        Partition *order* into levels of mutually independent measures.

        A measure with no dependencies lands in level 0; any other measure
        lands one level after the deepest of its dependencies.  *order* must
        be a topological order of *graph*.
        """
        level_of: dict[str, int] = {}
        levels: list[list[str]] = []
        for key in order:
            deps = [d for d in graph.get(key, ()) if d in graph]
            unplaced = [d for d in deps if d not in level_of]
            if unplaced:
                raise ValueError(
                    f"Measure {key!r} precedes its dependencies {sorted(unplaced)}; "
                    "order must be topological"
                )
            index = 1 + max((level_of[d] for d in deps), default=-1)
            level_of[key] = index
            while len(levels) <= index:
                levels.append([])
            levels[index].append(key)
        return levels

    # ------------------------------------------------------------------
    # Catalog helpers
    # ------------------------------------------------------------------

    def catalog(self) -> list[dict[str, Any]]:
        """Summary row per registered measure."""
        return [
            {
                "key": m.key,
                "name": m.name,
                "description": m.description,
                "component_count": len(m.components),
                "category": m.metadata.category,
                "unit": m.metadata.unit,
                "dependencies": self.transitive_dependencies(m.key),
            }
            for m in self._measures.values()
        ]

    def thresholds(self, key: str) -> tuple[MeasureThreshold, ...]:
        measure = self._measures.get(key)
        return measure.metadata.thresholds if measure is not None else ()

    def threshold(self, key: str, threshold_key: str | None = None) -> MeasureThreshold | None:
        thresholds = self.thresholds(key)
        if threshold_key is None:
            return thresholds[0] if thresholds else None
        return next((t for t in thresholds if t.key == threshold_key), None)

    def validate_all(self) -> ValidationResult:
        return validate_all_measures(self._measures)


def _implied_dependencies(measure: Measure) -> tuple[str, ...]:
    meta = measure.metadata
    if meta.calculation_type is CalculationType.FORWARD_COVER:
        return (meta.stock_measure, meta.issuance_measure)
    if meta.composition_strategy is CompositionStrategy.STOCK_ISSUANCE:
        return (meta.margin_measure,)
    return ()
