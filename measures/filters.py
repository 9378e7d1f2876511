"""
measures/filters.py

Per-record filter evaluation.

Two fields get special treatment:

* the categorical text field(s) (``channel`` by default) compare equality
  case-insensitively after trimming;
* the document-type field (``docType`` by default) is always compared
  numerically.  String operands are translated to option-set codes through
  a :class:`CodeLookup`; a side that cannot be translated makes the
  condition false, and so does any non-numeric operator.

Every other field follows plain comparison semantics.  Unknown operators
match (with a warning) so a malformed optional filter never empties a
measure silently.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol

from measures.models import FilterCondition, FilterLogic, FilterLogicType, FilterOperator

logger = logging.getLogger(__name__)

_NUMERIC_OPERATORS = frozenset(
    {
        FilterOperator.EQUALS,
        FilterOperator.NOT_EQUALS,
        FilterOperator.GREATER_THAN,
        FilterOperator.GREATER_THAN_OR_EQUAL,
        FilterOperator.LESS_THAN,
        FilterOperator.LESS_THAN_OR_EQUAL,
    }
)


class CodeLookup(Protocol):
    """Translates a categorical name (e.g. ``"Sales"``) to its numeric code."""

    def name_to_code(self, name: str) -> int | None: ...


class FilterEvaluator:
    """
    Evaluates :class:`FilterCondition` objects against semantic records.

    Parameters
    ----------
    code_lookup:
        Name → code translation for the document-type field.  Without one,
        only numeric document-type operands can match.
    doc_type_field:
        Name of the numerically compared categorical field.
    case_insensitive_fields:
        Text fields whose equality ignores case and surrounding whitespace.
    """

    def __init__(
        self,
        code_lookup: CodeLookup | None = None,
        *,
        doc_type_field: str = "docType",
        case_insensitive_fields: Iterable[str] = ("channel",),
    ) -> None:
        self._code_lookup = code_lookup
        self._doc_type_field = doc_type_field
        self._case_insensitive_fields = frozenset(case_insensitive_fields)

    @property
    def doc_type_field(self) -> str:
        return self._doc_type_field

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply_filters(
        self,
        records: Iterable[Mapping[str, Any]],
        logic: FilterLogic | None,
    ) -> list[Mapping[str, Any]]:
        """Return the records satisfying *logic* (all records when it is empty)."""
        rows = list(records)
        if logic is None or not logic.conditions:
            return rows
        combine = any if logic.logic is FilterLogicType.OR else all
        return [
            row
            for row in rows
            if combine(self.evaluate_condition(row, condition) for condition in logic.conditions)
        ]

    def evaluate_condition(self, record: Mapping[str, Any], condition: FilterCondition) -> bool:
        operator = _parse_operator(condition.operator)
        if condition.column == self._doc_type_field:
            return self._evaluate_doc_type(record.get(condition.column), condition, operator)
        if operator is None:
            logger.warning("Unknown filter operator %r on column %r; record kept", condition.operator, condition.column)
            return True
        return self._evaluate_plain(record.get(condition.column), condition, operator)

    def to_code(self, value: Any) -> int | None:
        """Translate a document-type operand to its numeric code."""
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return int(value) if float(value).is_integer() else None
        if isinstance(value, str) and self._code_lookup is not None:
            return self._code_lookup.name_to_code(value)
        return None

    # ------------------------------------------------------------------
    # Internal: document type
    # ------------------------------------------------------------------

    def _evaluate_doc_type(
        self,
        record_value: Any,
        condition: FilterCondition,
        operator: FilterOperator | None,
    ) -> bool:
        record_code = self.to_code(record_value)

        if operator in (FilterOperator.IN, FilterOperator.NOT_IN):
            if record_code is None or condition.values is None:
                return False
            codes = {c for c in (self.to_code(v) for v in condition.values) if c is not None}
            return (record_code in codes) == (operator is FilterOperator.IN)

        if operator not in _NUMERIC_OPERATORS:
            logger.warning(
                "Unsupported operator %r for %s; only numeric comparisons are supported",
                condition.operator,
                self._doc_type_field,
            )
            return False

        filter_code = self.to_code(condition.value)
        if record_code is None or filter_code is None:
            logger.warning(
                "Could not convert %s to a numeric code (filter=%r record=%r)",
                self._doc_type_field,
                condition.value,
                record_value,
            )
            return False
        return _compare(float(record_code), float(filter_code), operator)

    # ------------------------------------------------------------------
    # Internal: plain fields
    # ------------------------------------------------------------------

    def _evaluate_plain(self, record_value: Any, condition: FilterCondition, operator: FilterOperator) -> bool:
        value = condition.value

        if operator in (FilterOperator.EQUALS, FilterOperator.NOT_EQUALS):
            if condition.column in self._case_insensitive_fields:
                equal = _text(record_value).strip() == _text(value).strip()
            else:
                equal = record_value == value
            return equal if operator is FilterOperator.EQUALS else not equal

        if operator in _NUMERIC_OPERATORS:
            left, right = _to_number(record_value), _to_number(value)
            if left is None or right is None:
                return False
            return _compare(left, right, operator)

        if operator is FilterOperator.CONTAINS:
            return _text(value) in _text(record_value)
        if operator is FilterOperator.STARTS_WITH:
            return _text(record_value).startswith(_text(value))
        if operator is FilterOperator.ENDS_WITH:
            return _text(record_value).endswith(_text(value))
        if operator is FilterOperator.IN:
            return _is_list(condition.values) and record_value in condition.values
        if operator is FilterOperator.NOT_IN:
            return _is_list(condition.values) and record_value not in condition.values
        if operator is FilterOperator.IS_NULL:
            return record_value is None
        if operator is FilterOperator.IS_NOT_NULL:
            return record_value is not None
        return True


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def _parse_operator(raw: FilterOperator | str) -> FilterOperator | None:
    if isinstance(raw, FilterOperator):
        return raw
    try:
        return FilterOperator(raw)
    except ValueError:
        return None


def _compare(left: float, right: float, operator: FilterOperator) -> bool:
    if operator is FilterOperator.EQUALS:
        return left == right
    if operator is FilterOperator.NOT_EQUALS:
        return left != right
    if operator is FilterOperator.GREATER_THAN:
        return left > right
    if operator is FilterOperator.GREATER_THAN_OR_EQUAL:
        return left >= right
    if operator is FilterOperator.LESS_THAN:
        return left < right
    return left <= right


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> str:
    return "" if value is None else str(value).lower()


def _is_list(values: Any) -> bool:
    return isinstance(values, Sequence) and not isinstance(values, str)
