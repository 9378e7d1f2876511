"""
app/connectors/base.py

Table data source abstraction consumed by the calculation engine.

A table source returns records for ``(table, filters, date range)``.  Every
source speaks *semantic* field names (``countryId``, ``docType``,
``stockOutQty`` …); a :class:`TableSchema` maps them onto the physical
columns of one table.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from measures.models import DateRange

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]


class TableSourceError(RuntimeError):
    """
    Raised by a table source when records cannot be fetched.
    """


@dataclass(frozen=True)
class TableSchema:
    """
    Semantic → physical column mapping for one table.

    Attributes
    ----------
    table_key:
        Semantic table key used in measure definitions.
    physical_name:
        Name of the table in the backing store.
    columns:
        Semantic field name → physical column name.  Fields not listed are
        assumed to share the semantic name.
    date_field:
        Semantic name of the field a date range applies to, or ``None``
        for tables without a date dimension.
    """

    table_key: str
    physical_name: str | None = None
    columns: Mapping[str, str] = field(default_factory=dict)
    date_field: str | None = "date"

    @property
    def table_name(self) -> str:
        return self.physical_name or self.table_key

    def physical(self, semantic: str) -> str:
        return self.columns.get(semantic, semantic)

    def to_semantic(self, row: Record) -> dict[str, Any]:
        """Rename physical columns of *row* to semantic field names."""
        reverse = {physical: semantic for semantic, physical in self.columns.items()}
        return {reverse.get(name, name): value for name, value in row.items()}


class TableDataSource(ABC):
    """
    Source of table records for measure components.
    """

    def schema(self, table_key: str) -> TableSchema:
        """
        Return the schema of *table_key* (identity mapping by default).
        """

        return TableSchema(table_key=table_key)

    @abstractmethod
    async def fetch(
        self,
        table_key: str,
        filters: Mapping[str, Any],
        date_range: DateRange | None = None,
    ) -> Sequence[Record]:
        """
        Return the records of *table_key* matching *filters* and *date_range*.

        *filters* are equality predicates on semantic fields; a list or
        tuple value means "any of".  *date_range* is half-open and applies to
        the table's date field.
        """


class CategoricalCodeLookup(ABC):
    """
    Translates categorical option names to their numeric codes.
    """

    @abstractmethod
    def name_to_code(self, name: str) -> int | None:
        """
        Return the code of *name*, or ``None`` when it is unknown.
        """
