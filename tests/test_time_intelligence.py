"""
tests/test_time_intelligence.py

Pytest unit tests for the time-intelligence resolver.

All functions under test are pure; "today" is always passed explicitly.

Coverage
--------
- Month arithmetic across year boundaries
- Reference date precedence (date, year/month, today)
- Every window type: sameperiodlastyear, ytd, rolling, forward,
  lastyear, pastlastyear, custom
- Explicit start/end overrides
- Record filtering and date coercion
"""

from __future__ import annotations

from datetime import date, datetime

import pytest

from measures.models import DateRange, ExecutionContext, TimeIntelligence, TimeIntelligenceType
from measures.time_intelligence import (
    add_months,
    coerce_date,
    filter_records_by_range,
    month_range,
    reference_date,
    resolve_time_intelligence,
)

TODAY = date(2024, 6, 15)


@pytest.fixture()
def march_context() -> ExecutionContext:
    return ExecutionContext(year=2024, month=3, date=date(2024, 3, 15))


def _resolve(ti_type: TimeIntelligenceType, context: ExecutionContext, **kwargs) -> DateRange | None:
    return resolve_time_intelligence(TimeIntelligence(type=ti_type, **kwargs), context, TODAY)


# ---------------------------------------------------------------------------
# Month helpers
# ---------------------------------------------------------------------------


class TestMonthHelpers:
    def test_add_months_returns_first_of_month(self) -> None:
        assert add_months(date(2024, 3, 15), 1) == date(2024, 4, 1)

    def test_add_months_crosses_year_forwards(self) -> None:
        assert add_months(date(2024, 11, 20), 3) == date(2025, 2, 1)

    def test_add_months_crosses_year_backwards(self) -> None:
        assert add_months(date(2024, 1, 5), -1) == date(2023, 12, 1)

    def test_month_range_december(self) -> None:
        assert month_range(2024, 12) == DateRange(date(2024, 12, 1), date(2025, 1, 1))


class TestReferenceDate:
    def test_explicit_date_wins(self, march_context: ExecutionContext) -> None:
        assert reference_date(march_context, TODAY) == date(2024, 3, 15)

    def test_year_month_without_date(self) -> None:
        assert reference_date(ExecutionContext(year=2023, month=7), TODAY) == date(2023, 7, 1)

    def test_missing_parts_come_from_today(self) -> None:
        assert reference_date(ExecutionContext(month=2), TODAY) == date(2024, 2, 1)
        assert reference_date(ExecutionContext(), TODAY) == date(2024, 6, 1)


# ---------------------------------------------------------------------------
# Window types
# ---------------------------------------------------------------------------


class TestResolveTimeIntelligence:
    def test_none_resolves_to_none(self, march_context: ExecutionContext) -> None:
        assert resolve_time_intelligence(None, march_context, TODAY) is None

    def test_ytd(self, march_context: ExecutionContext) -> None:
        assert _resolve(TimeIntelligenceType.YTD, march_context) == DateRange(date(2024, 1, 1), date(2024, 4, 1))

    def test_same_period_last_year(self, march_context: ExecutionContext) -> None:
        assert _resolve(TimeIntelligenceType.SAME_PERIOD_LAST_YEAR, march_context) == DateRange(
            date(2023, 3, 1), date(2023, 4, 1)
        )

    def test_rolling_includes_reference_month(self, march_context: ExecutionContext) -> None:
        assert _resolve(TimeIntelligenceType.ROLLING, march_context, periods=3) == DateRange(
            date(2023, 12, 1), date(2024, 4, 1)
        )

    def test_rolling_defaults_to_twelve_periods(self, march_context: ExecutionContext) -> None:
        resolved = _resolve(TimeIntelligenceType.ROLLING, march_context)
        assert resolved.start == date(2023, 3, 1)

    def test_forward(self, march_context: ExecutionContext) -> None:
        assert _resolve(TimeIntelligenceType.FORWARD, march_context, periods=2) == DateRange(
            date(2024, 4, 1), date(2024, 6, 1)
        )

    def test_last_year(self, march_context: ExecutionContext) -> None:
        assert _resolve(TimeIntelligenceType.LAST_YEAR, march_context) == DateRange(
            date(2023, 1, 1), date(2024, 1, 1)
        )

    def test_past_last_year(self, march_context: ExecutionContext) -> None:
        assert _resolve(TimeIntelligenceType.PAST_LAST_YEAR, march_context) == DateRange(
            date(2022, 1, 1), date(2023, 1, 1)
        )

    def test_custom_without_bounds_is_unresolved(self, march_context: ExecutionContext) -> None:
        assert _resolve(TimeIntelligenceType.CUSTOM, march_context) is None

    def test_custom_with_bounds_covers_whole_months(self, march_context: ExecutionContext) -> None:
        resolved = _resolve(
            TimeIntelligenceType.CUSTOM,
            march_context,
            start_date=date(2024, 1, 15),
            end_date=date(2024, 2, 10),
        )
        assert resolved == DateRange(date(2024, 1, 1), date(2024, 3, 1))

    def test_end_override_applies_to_computed_window(self, march_context: ExecutionContext) -> None:
        resolved = _resolve(TimeIntelligenceType.YTD, march_context, end_date=date(2024, 5, 31))
        assert resolved == DateRange(date(2024, 1, 1), date(2024, 6, 1))

    def test_context_without_period_uses_today(self) -> None:
        resolved = _resolve(TimeIntelligenceType.YTD, ExecutionContext())
        assert resolved == DateRange(date(2024, 1, 1), date(2024, 7, 1))


# ---------------------------------------------------------------------------
# Record filtering
# ---------------------------------------------------------------------------


class TestRecordFiltering:
    def test_coerce_date_variants(self) -> None:
        assert coerce_date(date(2024, 3, 5)) == date(2024, 3, 5)
        assert coerce_date(datetime(2024, 3, 5, 10, 30)) == date(2024, 3, 5)
        assert coerce_date("2024-03-05") == date(2024, 3, 5)
        assert coerce_date("2024-03-05T10:00:00Z") == date(2024, 3, 5)
        assert coerce_date("not a date") is None
        assert coerce_date(None) is None

    def test_range_is_half_open_and_drops_undated(self) -> None:
        window = DateRange(date(2024, 3, 1), date(2024, 4, 1))
        records = [
            {"date": "2024-02-29", "id": 1},
            {"date": "2024-03-01", "id": 2},
            {"date": "2024-03-31", "id": 3},
            {"date": "2024-04-01", "id": 4},
            {"id": 5},
        ]
        kept = filter_records_by_range(records, window)
        assert [r["id"] for r in kept] == [2, 3]

    def test_custom_date_field(self) -> None:
        window = DateRange(date(2024, 3, 1), date(2024, 4, 1))
        kept = filter_records_by_range([{"monthYear": "2024-03-01"}], window, "monthYear")
        assert len(kept) == 1
