"""
measures/models.py

Immutable data model for declarative measure definitions and their
execution inputs.

A :class:`Measure` is an ordered composition of :class:`MeasureComponent`
terms.  Every component draws its value from exactly one
:data:`ComponentSource` variant:

    TableSource        – aggregate one field of a table
    MeasureSource      – reuse the value of another measure
    ConditionalSource  – pick between two sources at run time

Nothing in this module performs I/O.  All containers are frozen so that a
registered measure, and the context a measure runs under, can be shared
freely between concurrently executing measures.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Union


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class AggregationType(str, Enum):
    SUM = "sum"
    COUNT = "count"
    COUNT_DISTINCT = "countDistinct"
    AVERAGE = "average"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class OperationType(str, Enum):
    """How a component combines with the running result."""

    SUM = "sum"
    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    DIVIDE = "divide"
    FALLBACK = "fallback"


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN = "lessThan"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IN = "in"
    NOT_IN = "notIn"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"


class FilterLogicType(str, Enum):
    AND = "AND"
    OR = "OR"


class TimeIntelligenceType(str, Enum):
    SAME_PERIOD_LAST_YEAR = "sameperiodlastyear"
    YTD = "ytd"
    ROLLING = "rolling"
    FORWARD = "forward"
    LAST_YEAR = "lastyear"
    PAST_LAST_YEAR = "pastlastyear"
    CUSTOM = "custom"


class CalculationType(str, Enum):
    """Selects the engine path used for a measure."""

    STANDARD = "standard"
    DATE_LOOKUP = "dateLookup"
    FORWARD_COVER = "forwardCover"


class CompositionStrategy(str, Enum):
    """
    Selects how special operations combine inside a measure.

    ``standard``           – plain arithmetic for every operation
    ``stockIssuance``      – second-component ``multiply`` substitutes
                             ``value * safety margin`` when the first
                             component produced nothing
    ``percentageChange``   – ``divide`` computes ``(current - base) / base``
    ``percentageRatio``    – ``divide`` computes ``current / base``
    """

    STANDARD = "standard"
    STOCK_ISSUANCE = "stockIssuance"
    PERCENTAGE_CHANGE = "percentageChange"
    PERCENTAGE_RATIO = "percentageRatio"


# ---------------------------------------------------------------------------
# Filters and time windows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FilterCondition:
    """
    One per-record predicate.

    ``operator`` keeps the raw string when it is not a known
    :class:`FilterOperator`; such conditions match every record.
    """

    column: str
    operator: FilterOperator | str
    value: Any = None
    values: tuple[Any, ...] | None = None


@dataclass(frozen=True)
class FilterLogic:
    """AND/OR combination of per-record conditions."""

    logic: FilterLogicType = FilterLogicType.AND
    conditions: tuple[FilterCondition, ...] = ()


@dataclass(frozen=True)
class DateRange:
    """Half-open date interval ``[start, end)``."""

    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value < self.end

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class TimeIntelligence:
    """
    Semantic time-window declaration.

    ``periods`` applies to ``rolling`` and ``forward`` windows.  Explicit
    ``start_date`` / ``end_date`` override the computed boundaries.
    """

    type: TimeIntelligenceType
    periods: int | None = None
    date_field: str = "date"
    start_date: date | None = None
    end_date: date | None = None


# ---------------------------------------------------------------------------
# Component sources (closed tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TableSource:
    table_key: str
    field_name: str = "quantity"


@dataclass(frozen=True)
class MeasureSource:
    measure_key: str


@dataclass(frozen=True)
class ConditionalRule:
    """
    Month/data conditions of a conditional source.

    Set flags are OR-combined: the rule matches when any enabled check
    holds.  Flags left as ``None`` are not evaluated.
    """

    has_data: bool | None = None
    is_past_month: bool | None = None
    is_future_month: bool | None = None
    is_current_month: bool | None = None


@dataclass(frozen=True)
class ConditionalSource:
    conditions: ConditionalRule
    primary: "ComponentSource"
    fallback: "ComponentSource"


ComponentSource = Union[TableSource, MeasureSource, ConditionalSource]


def source_measure_keys(source: ComponentSource) -> tuple[str, ...]:
    """Return every measure key referenced by *source*, including nested branches."""
    if isinstance(source, MeasureSource):
        return (source.measure_key,)
    if isinstance(source, ConditionalSource):
        return source_measure_keys(source.primary) + source_measure_keys(source.fallback)
    return ()


# ---------------------------------------------------------------------------
# Measure definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MeasureComponent:
    id: str
    source: ComponentSource
    sort_order: int
    name: str = ""
    operation: OperationType = OperationType.ADD
    aggregation: AggregationType | str = AggregationType.SUM
    filters: FilterLogic | None = None
    time_intelligence: TimeIntelligence | None = None


@dataclass(frozen=True)
class MeasureThreshold:
    key: str
    name: str
    value: float
    operator: FilterOperator | None = None
    description: str | None = None


@dataclass(frozen=True)
class MeasureMetadata:
    """
    Descriptive and behavioural metadata of a measure.

    ``lookup_*`` fields only matter for ``dateLookup`` measures and name the
    raw event table scanned for the most recent qualifying date.
    ``stock_measure``/``issuance_measure`` feed ``forwardCover`` measures and
    ``margin_measure`` feeds the ``stockIssuance`` composition.
    """

    unit: str | None = None
    category: str | None = None
    thresholds: tuple[MeasureThreshold, ...] = ()
    calculation_type: CalculationType = CalculationType.STANDARD
    composition_strategy: CompositionStrategy = CompositionStrategy.STANDARD
    tags: tuple[str, ...] = ()
    version: str | None = None
    lookup_table: str = "rawAggregated"
    lookup_field: str = "stockOutQty"
    lookup_date_field: str = "date"
    stock_measure: str = "closingStock"
    issuance_measure: str = "issuesFromStock"
    margin_measure: str = "procurementSafeMargin"


@dataclass(frozen=True)
class Measure:
    key: str
    components: tuple[MeasureComponent, ...]
    name: str = ""
    description: str | None = None
    time_intelligence: TimeIntelligence | None = None
    metadata: MeasureMetadata = field(default_factory=MeasureMetadata)

    @property
    def sorted_components(self) -> tuple[MeasureComponent, ...]:
        return tuple(sorted(self.components, key=lambda c: c.sort_order))

    def direct_measure_keys(self) -> tuple[str, ...]:
        """Measure keys referenced by components, de-duplicated in order."""
        seen: dict[str, None] = {}
        for component in self.components:
            for key in source_measure_keys(component.source):
                seen.setdefault(key, None)
        return tuple(seen)


# ---------------------------------------------------------------------------
# Execution inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExecutionContext:
    """
    Per-call execution context.

    ``year``/``month``/``date`` only select the period; they are never sent
    to a table as column filters.  Use :meth:`query_fields` for the part of
    the context that narrows table queries.
    """

    country_id: str | None = None
    sku_id: str | None = None
    year: int | None = None
    month: int | None = None
    date: date | None = None
    date_range: DateRange | None = None
    time_intelligence: TimeIntelligence | None = None
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if not isinstance(self.extra, MappingProxyType):
            object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def query_fields(self, *, drop: frozenset[str] = frozenset()) -> dict[str, Any]:
        """
        Context fields forwarded to table queries.

        Period selectors (year, month, date, monthKey) and time-window
        settings are excluded.  Names listed in *drop* are removed too.
        """
        fields: dict[str, Any] = {}
        if self.country_id is not None:
            fields["countryId"] = self.country_id
        if self.sku_id is not None:
            fields["skuId"] = self.sku_id
        for name, value in self.extra.items():
            if name in PERIOD_FIELDS:
                continue
            fields[name] = value
        for name in drop:
            fields.pop(name, None)
        return fields

    def with_date_range(self, date_range: DateRange | None) -> "ExecutionContext":
        return replace(self, date_range=date_range)

    def with_period(self, *, year: int, month: int, day: date) -> "ExecutionContext":
        return replace(self, year=year, month=month, date=day, date_range=None)

    def with_time_intelligence(self, ti: TimeIntelligence | None) -> "ExecutionContext":
        return replace(self, time_intelligence=ti)

    def cache_key(self) -> tuple[Any, ...]:
        return (
            self.country_id,
            self.sku_id,
            self.year,
            self.month,
            self.date,
            self.date_range,
            self.time_intelligence,
            freeze(self.extra),
        )

    def describe(self) -> dict[str, Any]:
        return {
            "countryId": self.country_id,
            "skuId": self.sku_id,
            "year": self.year,
            "month": self.month,
        }


PERIOD_FIELDS: frozenset[str] = frozenset(
    {"year", "month", "date", "monthKey", "dateRange", "timeIntelligence"}
)
"""Filter/context names that only select a period and never reach a table query."""


def freeze(value: Any) -> Any:
    """Convert nested mappings/sequences into a hashable, order-stable form."""
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [freeze(v) for v in value]
        if isinstance(value, (set, frozenset)):
            return tuple(sorted(items, key=repr))
        return tuple(items)
    return value
