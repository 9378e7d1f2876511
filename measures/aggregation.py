"""
measures/aggregation.py

Aggregation of one record field into a single number.

Non-numeric and missing values are skipped by every aggregation except
``count`` (which counts records) and ``countDistinct`` (which counts the
distinct raw values present).  An empty input aggregates to ``0.0``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

from measures.models import AggregationType

logger = logging.getLogger(__name__)


def apply_aggregation(
    records: Iterable[Mapping[str, Any]],
    aggregation: AggregationType | str,
    field_name: str,
) -> float:
    """Aggregate *field_name* over *records*; unknown aggregations fall back to ``sum``."""
    rows = list(records)
    kind = _parse_aggregation(aggregation)

    if kind is AggregationType.COUNT:
        return float(len(rows))

    if kind is AggregationType.COUNT_DISTINCT:
        distinct = {_hashable(row.get(field_name)) for row in rows if row.get(field_name) is not None}
        return float(len(distinct))

    values = [v for v in (_to_float(row.get(field_name)) for row in rows) if v is not None]
    if not values:
        return 0.0

    if kind in (AggregationType.AVERAGE, AggregationType.AVG):
        return sum(values) / len(values)
    if kind is AggregationType.MIN:
        return min(values)
    if kind is AggregationType.MAX:
        return max(values)
    return float(sum(values))


def _parse_aggregation(aggregation: AggregationType | str) -> AggregationType:
    if isinstance(aggregation, AggregationType):
        return aggregation
    try:
        return AggregationType(aggregation)
    except ValueError:
        logger.warning("Unknown aggregation type %r, defaulting to sum", aggregation)
        return AggregationType.SUM


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _hashable(value: Any) -> Any:
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value
