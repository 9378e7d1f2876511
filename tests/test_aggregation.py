"""
tests/test_aggregation.py

Pytest unit tests for apply_aggregation.

Coverage
--------
- sum, count, countDistinct, average/avg, min, max
- Non-numeric and missing values
- Empty input
- Unknown aggregation falls back to sum with a warning
"""

from __future__ import annotations

import logging

import pytest

from measures.aggregation import apply_aggregation
from measures.models import AggregationType

ROWS = [
    {"qty": 10, "sku": "A"},
    {"qty": "20", "sku": "B"},
    {"qty": None, "sku": "A"},
    {"qty": "n/a", "sku": None},
    {"qty": 30.5, "sku": "C"},
]


class TestApplyAggregation:
    @pytest.mark.parametrize(
        ("aggregation", "expected"),
        [
            (AggregationType.SUM, 60.5),
            (AggregationType.AVERAGE, 60.5 / 3),
            (AggregationType.AVG, 60.5 / 3),
            (AggregationType.MIN, 10.0),
            (AggregationType.MAX, 30.5),
        ],
    )
    def test_numeric_aggregations_skip_non_numeric(self, aggregation: AggregationType, expected: float) -> None:
        assert apply_aggregation(ROWS, aggregation, "qty") == pytest.approx(expected)

    def test_count_counts_rows(self) -> None:
        assert apply_aggregation(ROWS, AggregationType.COUNT, "qty") == 5.0

    def test_count_distinct_ignores_missing(self) -> None:
        assert apply_aggregation(ROWS, AggregationType.COUNT_DISTINCT, "sku") == 3.0

    def test_raw_string_aggregation_accepted(self) -> None:
        assert apply_aggregation(ROWS, "max", "qty") == 30.5

    @pytest.mark.parametrize("aggregation", list(AggregationType))
    def test_empty_input_is_zero(self, aggregation: AggregationType) -> None:
        assert apply_aggregation([], aggregation, "qty") == 0.0

    def test_unknown_aggregation_defaults_to_sum(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="measures.aggregation"):
            assert apply_aggregation(ROWS, "median", "qty") == pytest.approx(60.5)
        assert "Unknown aggregation type 'median', defaulting to sum" in caplog.text
