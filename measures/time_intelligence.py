"""
measures/time_intelligence.py

Time-intelligence resolver.

Converts a semantic window declaration into a concrete half-open
:class:`~measures.models.DateRange` aligned to month boundaries.

Windows (reference month = month of the reference date)
-------------------------------------------------------
sameperiodlastyear  [first of (month, year - 1), first of following month)
ytd                 [1 Jan of year, first of month after reference)
rolling (N=12)      [first of (reference - N months), first of month after reference)
forward (N=12)      [first of month after reference, + N months)
lastyear            [1 Jan year - 1, 1 Jan year)
pastlastyear        [1 Jan year - 2, 1 Jan year - 1)
custom              no computed window; only explicit overrides apply

Explicit ``start_date`` replaces the start (moved to the first of its
month); explicit ``end_date`` replaces the end (moved to the first of the
following month so the window stays half-open).

Pure functions only.  No I/O, no logging.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from measures.models import DateRange, ExecutionContext, TimeIntelligence, TimeIntelligenceType

DEFAULT_PERIODS = 12


# ---------------------------------------------------------------------------
# Month helpers
# ---------------------------------------------------------------------------


def first_of_month(value: date) -> date:
    return value.replace(day=1)


def add_months(value: date, months: int) -> date:
    """Return the first day of the month *months* away from *value*'s month."""
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_range(year: int, month: int) -> DateRange:
    """``[first of month, first of next month)``."""
    start = date(year, month, 1)
    return DateRange(start=start, end=add_months(start, 1))


def reference_date(context: ExecutionContext, today: date | None = None) -> date:
    """
    Reference date of *context*.

    ``context.date`` wins; otherwise the first of ``(year, month)`` with
    missing parts taken from *today*.
    """
    if context.date is not None:
        return context.date
    current = today or date.today()
    return date(context.year or current.year, context.month or current.month, 1)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


def resolve_time_intelligence(
    ti: TimeIntelligence | None,
    context: ExecutionContext,
    today: date | None = None,
) -> DateRange | None:
    """
    Resolve *ti* against *context*.

    Returns ``None`` when *ti* is ``None`` or is a ``custom`` window without
    both overrides.
    """
    if ti is None:
        return None

    ref = reference_date(context, today)
    year = context.year or ref.year
    month = context.month or ref.month
    periods = ti.periods or DEFAULT_PERIODS

    start: date | None
    end: date | None
    if ti.type is TimeIntelligenceType.SAME_PERIOD_LAST_YEAR:
        start = date(year - 1, month, 1)
        end = add_months(start, 1)
    elif ti.type is TimeIntelligenceType.YTD:
        start = date(year, 1, 1)
        end = add_months(ref, 1)
    elif ti.type is TimeIntelligenceType.ROLLING:
        start = add_months(ref, -periods)
        end = add_months(ref, 1)
    elif ti.type is TimeIntelligenceType.FORWARD:
        start = add_months(ref, 1)
        end = add_months(start, periods)
    elif ti.type is TimeIntelligenceType.LAST_YEAR:
        start = date(year - 1, 1, 1)
        end = date(year, 1, 1)
    elif ti.type is TimeIntelligenceType.PAST_LAST_YEAR:
        start = date(year - 2, 1, 1)
        end = date(year - 1, 1, 1)
    else:
        start = end = None

    if ti.start_date is not None:
        start = first_of_month(ti.start_date)
    if ti.end_date is not None:
        end = add_months(ti.end_date, 1)

    if start is None or end is None:
        return None
    return DateRange(start=start, end=end)


# ---------------------------------------------------------------------------
# Record filtering
# ---------------------------------------------------------------------------


def coerce_date(value: Any) -> date | None:
    """Best-effort conversion of a record value to a :class:`date`."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            try:
                return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
            except ValueError:
                return None
    return None


def filter_records_by_range(
    records: Iterable[Mapping[str, Any]],
    date_range: DateRange,
    date_field: str = "date",
) -> list[Mapping[str, Any]]:
    """Keep records whose *date_field* falls inside *date_range*; undated records are dropped."""
    kept: list[Mapping[str, Any]] = []
    for record in records:
        value = coerce_date(record.get(date_field))
        if value is not None and date_range.contains(value):
            kept.append(record)
    return kept
