"""
app/connectors/sql_table_source.py

SQLAlchemy-backed table source.

Each semantic table key maps to a physical table through a
:class:`~app.connectors.base.TableSchema`.  Tables are reflected lazily on
first use and cached per source instance.

Query design
------------
One ``SELECT`` per fetch.  Filters become equality (or ``IN``) predicates
on the mapped columns; a date range becomes ``date >= start AND date < end``
on the schema's date column.  Filter names without a matching column are
ignored with a warning so a context field that does not apply to a table
never fails the query.

The blocking database call runs in a worker thread via
:func:`asyncio.to_thread`, so fetches of concurrently executing measures
overlap.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from sqlalchemy import MetaData, Table, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.connectors.base import Record, TableDataSource, TableSchema, TableSourceError
from measures.models import DateRange

logger = logging.getLogger(__name__)


class SqlTableSource(TableDataSource):
    """
    Table source over a relational database.

    Parameters
    ----------
    engine:
        SQLAlchemy engine.  The caller owns its lifecycle.
    schemas:
        Table schemas keyed by semantic table key.  Unknown table keys fall
        back to an identity schema (physical name = table key).
    """

    def __init__(self, engine: Engine, schemas: Iterable[TableSchema] = ()) -> None:
        self._engine = engine
        self._schemas = {schema.table_key: schema for schema in schemas}
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}
        self._reflect_lock = threading.Lock()

    # ------------------------------------------------------------------
    # TableDataSource
    # ------------------------------------------------------------------

    def schema(self, table_key: str) -> TableSchema:
        return self._schemas.get(table_key) or TableSchema(table_key=table_key)

    async def fetch(
        self,
        table_key: str,
        filters: Mapping[str, Any],
        date_range: DateRange | None = None,
    ) -> Sequence[Record]:
        return await asyncio.to_thread(self.fetch_sync, table_key, dict(filters), date_range)

    # ------------------------------------------------------------------
    # Synchronous implementation
    # ------------------------------------------------------------------

    def fetch_sync(
        self,
        table_key: str,
        filters: Mapping[str, Any],
        date_range: DateRange | None = None,
    ) -> list[dict[str, Any]]:
        """
        Run the query for *table_key* and return physical rows as dicts.
        """

        schema = self.schema(table_key)
        try:
            table = self._table(schema)
            stmt = select(table)

            for name, value in filters.items():
                column = table.c.get(schema.physical(name))
                if column is None:
                    logger.warning("Filter %r has no column on table %s; ignored", name, schema.table_name)
                    continue
                if isinstance(value, (list, tuple, set, frozenset)):
                    stmt = stmt.where(column.in_(list(value)))
                else:
                    stmt = stmt.where(column == value)

            if date_range is not None and schema.date_field is not None:
                date_column = table.c.get(schema.physical(schema.date_field))
                if date_column is None:
                    logger.warning(
                        "Date field %r has no column on table %s; date range ignored",
                        schema.date_field,
                        schema.table_name,
                    )
                else:
                    stmt = stmt.where(date_column >= date_range.start, date_column < date_range.end)

            with self._engine.connect() as conn:
                rows = [dict(row) for row in conn.execute(stmt).mappings()]
        except SQLAlchemyError as exc:
            raise TableSourceError(f"Query on {schema.table_name} failed: {exc}") from exc

        logger.debug("SQL fetch table=%s rows=%d", schema.table_name, len(rows))
        return rows

    def _table(self, schema: TableSchema) -> Table:
        """
        Reflected table for *schema*.

        Reflection registers the table in the shared MetaData before its
        columns are loaded, so only one thread reflects at a time and a
        table is published to ``_tables`` once complete.
        """
        table = self._tables.get(schema.table_key)
        if table is not None:
            return table
        with self._reflect_lock:
            table = self._tables.get(schema.table_key)
            if table is None:
                table = Table(schema.table_name, self._metadata, autoload_with=self._engine)
                self._tables[schema.table_key] = table
                logger.debug("Reflected table %s columns=%d", schema.table_name, len(table.c))
        return table
