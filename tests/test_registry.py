"""
tests/test_registry.py

Pytest unit tests for MeasureRegistry and the dependency-graph primitives.

Coverage
--------
- Registration: structural validation, replacement, strict cycle check
- Lookup helpers and missing-key reporting
- Dependency graph: transitive closure, implied dependencies
- topological_sort: dependencies first, cycle chain reporting
- group_by_level: smallest valid level for every measure
- Catalog summary and thresholds
"""

from __future__ import annotations

import pytest

from measures.errors import CycleError, MeasureNotFoundError, MeasureValidationError
from measures.models import CalculationType, CompositionStrategy, MeasureThreshold, OperationType
from measures.registry import MeasureRegistry
from tests.helpers import make_measure, measure_component, table_component


def _chain_registry() -> MeasureRegistry:
    """a → b → c, a → c, d independent."""
    return MeasureRegistry(
        [
            make_measure("c", table_component("raw")),
            make_measure("b", measure_component("c")),
            make_measure(
                "a",
                measure_component("b"),
                measure_component("c", sort_order=1, operation=OperationType.SUBTRACT),
            ),
            make_measure("d", table_component("raw")),
        ]
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegistration:
    def test_register_and_lookup(self) -> None:
        registry = MeasureRegistry()
        registry.register(make_measure("sales", table_component("raw")))

        assert registry.has("sales")
        assert "sales" in registry
        assert len(registry) == 1
        assert registry.get("sales").key == "sales"
        assert registry.get("unknown") is None

    def test_empty_components_rejected(self) -> None:
        registry = MeasureRegistry()
        with pytest.raises(MeasureValidationError) as exc_info:
            registry.register(make_measure("empty"))
        assert "at least one component" in str(exc_info.value)

    def test_duplicate_sort_orders_rejected(self) -> None:
        registry = MeasureRegistry()
        measure = make_measure(
            "dup",
            table_component("raw", component_id="one"),
            table_component("raw", component_id="two"),
        )
        with pytest.raises(MeasureValidationError):
            registry.register(measure)

    def test_reregistration_replaces_definition(self) -> None:
        registry = MeasureRegistry([make_measure("m", table_component("first"))])
        registry.register(make_measure("m", table_component("second")))
        assert registry.require("m").components[0].source.table_key == "second"
        assert len(registry) == 1

    def test_cycles_are_accepted_unless_strict(self) -> None:
        measures = [
            make_measure("a", measure_component("b")),
            make_measure("b", measure_component("a")),
        ]
        assert MeasureRegistry(measures).keys() == ["a", "b"]

        with pytest.raises(CycleError):
            MeasureRegistry().register_all(measures, strict=True)

    def test_require_unknown_raises(self) -> None:
        with pytest.raises(MeasureNotFoundError) as exc_info:
            MeasureRegistry().require("ghost")
        assert exc_info.value.keys == ("ghost",)

    def test_missing_deduplicates_in_order(self) -> None:
        registry = _chain_registry()
        assert registry.missing(["x", "a", "y", "x"]) == ["x", "y"]

    def test_clear(self) -> None:
        registry = _chain_registry()
        registry.clear()
        assert len(registry) == 0


# ---------------------------------------------------------------------------
# Dependency graph
# ---------------------------------------------------------------------------


class TestDependencyGraph:
    def test_graph_contains_transitive_closure(self) -> None:
        graph = _chain_registry().build_dependency_graph(["a"])
        assert graph == {
            "a": frozenset({"b", "c"}),
            "b": frozenset({"c"}),
            "c": frozenset(),
        }

    def test_unregistered_requested_keys_all_named(self) -> None:
        with pytest.raises(MeasureNotFoundError) as exc_info:
            _chain_registry().build_dependency_graph(["a", "x", "y"])
        assert exc_info.value.keys == ("x", "y")

    def test_unregistered_transitive_reference_left_out(self) -> None:
        registry = MeasureRegistry([make_measure("a", measure_component("ghost"))])
        assert registry.build_dependency_graph(["a"]) == {"a": frozenset()}

    def test_transitive_dependencies(self) -> None:
        assert sorted(_chain_registry().transitive_dependencies("a")) == ["b", "c"]

    def test_forward_cover_implies_stock_and_issuance(self) -> None:
        registry = MeasureRegistry(
            [
                make_measure("closingStock", table_component("inventory")),
                make_measure("issuesFromStock", table_component("raw")),
                make_measure(
                    "monthsCover",
                    table_component("unused"),
                    calculation_type=CalculationType.FORWARD_COVER,
                ),
            ]
        )
        assert set(registry.direct_dependencies("monthsCover")) == {"closingStock", "issuesFromStock"}

    def test_stock_issuance_margin_only_when_registered(self) -> None:
        issues = make_measure(
            "issues",
            table_component("raw"),
            composition_strategy=CompositionStrategy.STOCK_ISSUANCE,
        )
        registry = MeasureRegistry([issues])
        assert registry.direct_dependencies("issues") == []

        registry.register(make_measure("procurementSafeMargin", table_component("margin")))
        assert registry.direct_dependencies("issues") == ["procurementSafeMargin"]

    def test_find_cycle_reports_chain(self) -> None:
        registry = MeasureRegistry(
            [
                make_measure("a", measure_component("b")),
                make_measure("b", measure_component("a")),
            ]
        )
        assert registry.find_cycle("a") == ["a", "b", "a"]
        assert _chain_registry().find_cycle("a") is None


# ---------------------------------------------------------------------------
# Ordering and levels
# ---------------------------------------------------------------------------


class TestTopologicalSort:
    def test_dependencies_come_first(self) -> None:
        registry = _chain_registry()
        graph = registry.build_dependency_graph(["a", "d"])
        order = MeasureRegistry.topological_sort(graph)

        assert sorted(order) == ["a", "b", "c", "d"]
        for key, deps in graph.items():
            for dep in deps:
                assert order.index(dep) < order.index(key)

    def test_cycle_raises_with_full_chain(self) -> None:
        graph = {"a": frozenset({"b"}), "b": frozenset({"a"})}
        with pytest.raises(CycleError) as exc_info:
            MeasureRegistry.topological_sort(graph)
        assert exc_info.value.chain == ("a", "b", "a")
        assert "a -> b -> a" in str(exc_info.value)

    def test_self_reference_is_a_cycle(self) -> None:
        with pytest.raises(CycleError):
            MeasureRegistry.topological_sort({"a": frozenset({"a"})})


class TestGroupByLevel:
    def test_levels_are_minimal(self) -> None:
        graph = _chain_registry().build_dependency_graph(["a", "d"])
        order = MeasureRegistry.topological_sort(graph)
        levels = MeasureRegistry.group_by_level(graph, order)

        assert sorted(levels[0]) == ["c", "d"]
        assert levels[1] == ["b"]
        assert levels[2] == ["a"]

    def test_non_topological_order_rejected(self) -> None:
        graph = {"a": frozenset({"b"}), "b": frozenset()}
        with pytest.raises(ValueError):
            MeasureRegistry.group_by_level(graph, ["a", "b"])


# ---------------------------------------------------------------------------
# Catalog helpers
# ---------------------------------------------------------------------------


class TestCatalogHelpers:
    def test_catalog_rows(self) -> None:
        rows = {row["key"]: row for row in _chain_registry().catalog()}
        assert rows["a"]["component_count"] == 2
        assert sorted(rows["a"]["dependencies"]) == ["b", "c"]
        assert rows["d"]["dependencies"] == []

    def test_thresholds(self) -> None:
        low = MeasureThreshold(key="low", name="Low", value=1.0)
        high = MeasureThreshold(key="high", name="High", value=5.0)
        registry = MeasureRegistry([make_measure("m", table_component("raw"), thresholds=(low, high))])

        assert registry.thresholds("m") == (low, high)
        assert registry.threshold("m") == low
        assert registry.threshold("m", "high") == high
        assert registry.threshold("m", "missing") is None
        assert registry.thresholds("unknown") == ()

    def test_validate_all_reports_cycles(self) -> None:
        registry = MeasureRegistry(
            [
                make_measure("a", measure_component("b")),
                make_measure("b", measure_component("a")),
            ]
        )
        result = registry.validate_all()
        assert not result.valid
        assert any("Circular dependency detected" in message for message in result.messages())
