"""
app/connectors package marker.
"""

from app.connectors.base import (
    CategoricalCodeLookup,
    Record,
    TableDataSource,
    TableSchema,
    TableSourceError,
)
from app.connectors.in_memory import InMemoryTableSource, StaticCodeLookup
from app.connectors.sql_table_source import SqlTableSource

__all__ = [
    "CategoricalCodeLookup",
    "Record",
    "TableDataSource",
    "TableSchema",
    "TableSourceError",
    "InMemoryTableSource",
    "StaticCodeLookup",
    "SqlTableSource",
]
