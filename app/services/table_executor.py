"""
app/services/table_executor.py

Table component executor.

Turns one table-sourced measure component into a number:

    1. merge call filters with the context's query fields
    2. derive the half-open date range (unless the table is date-less)
    3. fetch records from the table source
    4. rename physical columns to semantic field names
    5. re-apply the time-intelligence window to the records
    6. apply the component's filter logic
    7. aggregate the declared field

Date range precedence
---------------------
component (or context) time intelligence → ``context.date_range`` →
``[first of target month, first of next month)``.

Call filters never carry period fields (year, month, date, monthKey …);
those are dropped with a warning since periods are derived from the
execution context only.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from app.config import EngineSettings
from app.connectors.base import Record, TableDataSource
from measures.aggregation import apply_aggregation
from measures.errors import MeasureEngineError, TableFetchError
from measures.filters import FilterEvaluator
from measures.models import PERIOD_FIELDS, DateRange, ExecutionContext, MeasureComponent, TableSource
from measures.time_intelligence import filter_records_by_range, month_range, resolve_time_intelligence

logger = logging.getLogger(__name__)


class TableComponentExecutor:
    """
    Executes table-sourced components against a :class:`TableDataSource`.

    Parameters
    ----------
    source:
        Table data source used for every fetch.
    evaluator:
        Filter evaluator; its code lookup also translates document-type
        values found in call filters.
    settings:
        Engine settings supplying the date-less and country-scoped tables.
    """

    def __init__(
        self,
        source: TableDataSource,
        evaluator: FilterEvaluator,
        settings: EngineSettings,
    ) -> None:
        self._source = source
        self._evaluator = evaluator
        self._dateless_tables = settings.dateless_tables
        self._country_scoped_tables = settings.country_scoped_tables

    @property
    def source(self) -> TableDataSource:
        return self._source

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(
        self,
        component: MeasureComponent,
        table: TableSource,
        filters: Mapping[str, Any],
        context: ExecutionContext,
        today: date | None = None,
    ) -> float:
        """
        Fetch, filter and aggregate *table* for *component*.

        Raises
        ------
        TableFetchError
            When the table source fails.
        """

        ti = component.time_intelligence or context.time_intelligence
        date_range = self.resolve_date_range(table.table_key, component, context, today)
        query = self.query_filters(table.table_key, filters, context)

        records = await self.fetch_records(table.table_key, query, date_range)

        if ti is not None and date_range is not None:
            records = filter_records_by_range(records, date_range, ti.date_field)
        if component.filters is not None:
            records = self._evaluator.apply_filters(records, component.filters)

        value = apply_aggregation(records, component.aggregation, table.field_name)
        logger.debug(
            "Table component %s table=%s range=%s rows=%d value=%s",
            component.id,
            table.table_key,
            date_range.as_dict() if date_range else None,
            len(records),
            value,
        )
        return value

    def resolve_date_range(
        self,
        table_key: str,
        component: MeasureComponent,
        context: ExecutionContext,
        today: date | None = None,
    ) -> DateRange | None:
        """Half-open date range sent to *table_key*, or ``None`` for date-less tables."""
        if table_key in self._dateless_tables:
            return None

        ti = component.time_intelligence or context.time_intelligence
        resolved = resolve_time_intelligence(ti, context, today)
        if resolved is not None:
            return resolved
        if context.date_range is not None:
            return context.date_range
        if context.year is not None and context.month is not None:
            return month_range(context.year, context.month)
        if context.date is not None:
            return month_range(context.date.year, context.date.month)
        return None

    def query_filters(
        self,
        table_key: str,
        filters: Mapping[str, Any],
        context: ExecutionContext,
    ) -> dict[str, Any]:
        """Equality filters sent to the table source for *table_key*."""
        query: dict[str, Any] = {}
        for name, value in filters.items():
            if name in PERIOD_FIELDS:
                logger.warning("Ignoring period field %r in call filters; periods come from the context", name)
                continue
            query[name] = value

        drop = frozenset({"skuId"}) if table_key in self._country_scoped_tables else frozenset()
        query.update(context.query_fields(drop=drop))
        for name in drop:
            query.pop(name, None)

        doc_type_field = self._evaluator.doc_type_field
        if doc_type_field in query:
            query[doc_type_field] = self._translate_doc_type(query[doc_type_field], table_key)
        return query

    async def fetch_records(
        self,
        table_key: str,
        query: Mapping[str, Any],
        date_range: DateRange | None,
    ) -> list[dict[str, Any]]:
        """Fetch *table_key* and return rows keyed by semantic field names."""
        try:
            rows: Sequence[Record] = await self._source.fetch(table_key, query, date_range)
        except MeasureEngineError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise TableFetchError(table_key, str(exc)) from exc

        schema = self._source.schema(table_key)
        return [schema.to_semantic(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _translate_doc_type(self, value: Any, table_key: str) -> Any:
        if isinstance(value, (list, tuple)):
            return [self._translate_doc_type(item, table_key) for item in value]
        code = self._evaluator.to_code(value)
        if code is None:
            logger.warning("Could not convert document type %r to a code for table %s; using as-is", value, table_key)
            return value
        return code
