"""
measures/validator.py

Structural validation of measure definitions.

Validation never raises: every function returns the list of problems it
found so that a caller can report all of them in one pass.  The registry
turns a non-empty result into :class:`~measures.errors.MeasureValidationError`.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from measures.models import (
    ComponentSource,
    ConditionalSource,
    FilterCondition,
    FilterLogic,
    FilterOperator,
    Measure,
    MeasureComponent,
    MeasureSource,
    TableSource,
)

_VALUELESS_OPERATORS = frozenset({FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL})
_LIST_OPERATORS = frozenset({FilterOperator.IN, FilterOperator.NOT_IN})


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    message: str


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    @property
    def valid(self) -> bool:
        return not self.errors

    def messages(self) -> list[str]:
        return [f"{issue.path}: {issue.message}" for issue in self.errors]


def validate_measure(measure: Measure) -> ValidationResult:
    """Validate one measure definition in isolation."""
    errors: list[ValidationIssue] = []

    if not measure.key or not isinstance(measure.key, str):
        errors.append(ValidationIssue("key", "Measure key is required and must be a string"))

    if not measure.components:
        errors.append(ValidationIssue("components", "Measure must have at least one component"))

    for index, component in enumerate(measure.components):
        errors.extend(validate_component(component, f"components[{index}]"))

    ids = Counter(c.id for c in measure.components if c.id)
    duplicate_ids = sorted(k for k, n in ids.items() if n > 1)
    if duplicate_ids:
        errors.append(
            ValidationIssue("components", f"Duplicate component IDs found: {', '.join(duplicate_ids)}")
        )

    orders = Counter(c.sort_order for c in measure.components)
    duplicate_orders = sorted(k for k, n in orders.items() if n > 1)
    if duplicate_orders:
        errors.append(
            ValidationIssue(
                "components",
                f"Duplicate sort orders found: {', '.join(str(o) for o in duplicate_orders)}",
            )
        )

    return ValidationResult(tuple(errors))


def validate_component(component: MeasureComponent, path: str) -> list[ValidationIssue]:
    errors: list[ValidationIssue] = []
    if not component.id:
        errors.append(ValidationIssue(f"{path}.id", "Component ID is required and must be a string"))
    if not isinstance(component.sort_order, int) or isinstance(component.sort_order, bool):
        errors.append(ValidationIssue(f"{path}.sortOrder", "Component sortOrder must be an integer"))
    errors.extend(validate_source(component.source, f"{path}.source"))
    if component.filters is not None:
        errors.extend(validate_filter_logic(component.filters, f"{path}.filters"))
    return errors


def validate_source(source: ComponentSource, path: str) -> list[ValidationIssue]:
    if isinstance(source, TableSource):
        if not source.table_key:
            return [ValidationIssue(f"{path}.tableKey", "Table source must have a tableKey")]
        return []
    if isinstance(source, MeasureSource):
        if not source.measure_key:
            return [ValidationIssue(f"{path}.measureKey", "Measure source must have a measureKey")]
        return []
    if isinstance(source, ConditionalSource):
        return validate_source(source.primary, f"{path}.primarySource") + validate_source(
            source.fallback, f"{path}.fallbackSource"
        )
    return [ValidationIssue(path, "Source type must be one of: table, measure, conditional")]


def validate_filter_logic(logic: FilterLogic, path: str) -> list[ValidationIssue]:
    errors: list[ValidationIssue] = []
    if not logic.conditions:
        errors.append(ValidationIssue(f"{path}.conditions", "Filter must have at least one condition"))
    for index, condition in enumerate(logic.conditions):
        errors.extend(validate_filter_condition(condition, f"{path}.conditions[{index}]"))
    return errors


def validate_filter_condition(condition: FilterCondition, path: str) -> list[ValidationIssue]:
    errors: list[ValidationIssue] = []
    if not condition.column:
        errors.append(ValidationIssue(f"{path}.column", "Condition column is required"))

    if condition.operator in _LIST_OPERATORS:
        if not condition.values:
            errors.append(
                ValidationIssue(
                    f"{path}.values",
                    f'Operator "{_operator_name(condition.operator)}" requires a non-empty values array',
                )
            )
    elif condition.operator not in _VALUELESS_OPERATORS and condition.value is None:
        errors.append(
            ValidationIssue(f"{path}.value", f'Operator "{_operator_name(condition.operator)}" requires a value')
        )
    return errors


def detect_cycle(
    measures: Mapping[str, Measure],
    start_key: str,
    dependencies: Callable[[str], Iterable[str]] | None = None,
) -> list[str] | None:
    """
    Return the dependency cycle reachable from *start_key*, or ``None``.

    The cycle is reported as a key chain that starts and ends with the
    same key, e.g. ``["a", "b", "a"]``.  *dependencies* defaults to the
    measure keys referenced by components.
    """

    def component_dependencies(key: str) -> Iterable[str]:
        return measures[key].direct_measure_keys()

    dependencies_of = dependencies or component_dependencies

    stack: list[str] = []
    on_stack: set[str] = set()
    done: set[str] = set()

    def visit(key: str) -> list[str] | None:
        if key in on_stack:
            return stack[stack.index(key):] + [key]
        if key in done:
            return None
        if key not in measures:
            return None
        stack.append(key)
        on_stack.add(key)
        for dep in dependencies_of(key):
            found = visit(dep)
            if found is not None:
                return found
        stack.pop()
        on_stack.discard(key)
        done.add(key)
        return None

    return visit(start_key)


def validate_all_measures(measures: Mapping[str, Measure]) -> ValidationResult:
    """Validate every measure and report each dependency cycle found."""
    errors: list[ValidationIssue] = []
    for key, measure in measures.items():
        for issue in validate_measure(measure).errors:
            errors.append(ValidationIssue(f"{key}.{issue.path}", issue.message))
        cycle = detect_cycle(measures, key)
        if cycle:
            errors.append(
                ValidationIssue(key, f"Circular dependency detected: {' -> '.join(cycle)}")
            )
    return ValidationResult(tuple(errors))


def _operator_name(operator: object) -> str:
    return str(getattr(operator, "value", operator))
