"""
app/connectors/in_memory.py

In-memory table source and static code lookup.

Used by tests and by callers that already hold their data as Python
records (e.g. a CSV export loaded at start-up).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from app.connectors.base import CategoricalCodeLookup, Record, TableDataSource, TableSchema
from measures.models import DateRange
from measures.time_intelligence import coerce_date

logger = logging.getLogger(__name__)


class InMemoryTableSource(TableDataSource):
    """
    Table source over lists of semantic records.

    Every call is appended to :attr:`calls` as
    ``(table_key, filters, date_range)`` so callers can inspect what was
    requested.
    """

    def __init__(
        self,
        tables: Mapping[str, Iterable[Record]] | None = None,
        *,
        schemas: Iterable[TableSchema] = (),
    ) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {
            key: [dict(row) for row in rows] for key, rows in (tables or {}).items()
        }
        self._schemas = {schema.table_key: schema for schema in schemas}
        self.calls: list[tuple[str, dict[str, Any], DateRange | None]] = []

    def add_records(self, table_key: str, rows: Iterable[Record]) -> None:
        self._tables.setdefault(table_key, []).extend(dict(row) for row in rows)

    def schema(self, table_key: str) -> TableSchema:
        return self._schemas.get(table_key) or TableSchema(table_key=table_key)

    async def fetch(
        self,
        table_key: str,
        filters: Mapping[str, Any],
        date_range: DateRange | None = None,
    ) -> Sequence[Record]:
        self.calls.append((table_key, dict(filters), date_range))
        date_field = self.schema(table_key).date_field

        matched: list[Record] = []
        for row in self._tables.get(table_key, []):
            if not all(_matches(row.get(name), expected) for name, expected in filters.items()):
                continue
            if date_range is not None and date_field is not None:
                value = coerce_date(row.get(date_field))
                if value is None or not date_range.contains(value):
                    continue
            matched.append(dict(row))

        logger.debug("In-memory fetch table=%s filters=%s rows=%d", table_key, dict(filters), len(matched))
        return matched


class StaticCodeLookup(CategoricalCodeLookup):
    """
    Name → code lookup over a fixed mapping.

    Names compare case-insensitively after trimming.
    """

    def __init__(self, codes: Mapping[str, int]) -> None:
        self._codes = {_normalize(name): int(code) for name, code in codes.items()}

    def name_to_code(self, name: str) -> int | None:
        return self._codes.get(_normalize(name))


def _matches(actual: Any, expected: Any) -> bool:
    if isinstance(expected, (list, tuple, set, frozenset)):
        return actual in expected
    return actual == expected


def _normalize(name: str) -> str:
    return str(name).strip().lower()
