"""
measures/errors.py

Exception taxonomy for measure registration and calculation.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence


class MeasureEngineError(Exception):
    """Base exception for measure registry and calculation failures."""


class MeasureNotFoundError(MeasureEngineError, LookupError):
    """
    Raised when one or more measure keys are not registered.

    ``keys`` lists every unresolvable key so callers can report them all
    at once.
    """

    def __init__(self, keys: Iterable[str]) -> None:
        self.keys: tuple[str, ...] = tuple(keys)
        if len(self.keys) == 1:
            message = f'Measure "{self.keys[0]}" not found'
        else:
            message = f"Measures not found in registry: {', '.join(self.keys)}"
        super().__init__(message)


class CircularDependencyError(MeasureEngineError):
    """Raised when a measure (directly or transitively) depends on itself."""

    def __init__(self, chain: Sequence[str]) -> None:
        self.chain: tuple[str, ...] = tuple(chain)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.chain)}")


class CycleError(CircularDependencyError):
    """Raised by graph ordering when the dependency graph is not acyclic."""


class InvalidComponentSourceError(MeasureEngineError):
    """Raised when a component source is not one of the supported variants."""


class TableFetchError(MeasureEngineError):
    """Raised when the table data source fails to return records."""

    def __init__(self, table_key: str, message: str) -> None:
        self.table_key = table_key
        super().__init__(f"Failed to fetch table {table_key!r}: {message}")


class MeasureValidationError(MeasureEngineError, ValueError):
    """Raised when a measure definition fails structural validation."""

    def __init__(self, measure_key: str, errors: Sequence[str]) -> None:
        self.measure_key = measure_key
        self.errors: tuple[str, ...] = tuple(errors)
        super().__init__(f'Invalid measure "{measure_key}": {", ".join(self.errors)}')


class CatalogLoadError(MeasureEngineError, ValueError):
    """Raised when a measure catalog file cannot be parsed."""
