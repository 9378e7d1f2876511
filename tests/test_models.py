"""
tests/test_models.py

Unit tests for the execution context value object.

Coverage
--------
- Construction with defaults
- ``extra`` is copied, read-only and excluded from equality
- Query fields drop period selectors
- Cache keys are hashable and independent of ``extra`` insertion order
"""

from __future__ import annotations

from types import MappingProxyType

import pytest

from measures.models import ExecutionContext


class TestExecutionContext:
    def test_defaults(self) -> None:
        context = ExecutionContext()

        assert context.extra == {}
        assert isinstance(context.extra, MappingProxyType)
        assert context.query_fields() == {}

    def test_default_extra_not_shared_state(self) -> None:
        first = ExecutionContext()
        second = ExecutionContext()

        with pytest.raises(TypeError):
            first.extra["channel"] = "Retail"  # type: ignore[index]
        assert second.extra == {}

    def test_extra_is_copied(self) -> None:
        extra = {"channel": "Retail"}
        context = ExecutionContext(extra=extra)
        extra["channel"] = "Hospital"

        assert context.extra == {"channel": "Retail"}

    def test_query_fields_skip_period_selectors(self) -> None:
        context = ExecutionContext(
            country_id="NG", year=2024, month=6, extra={"monthKey": "2024-06", "channel": "Retail"}
        )

        assert context.query_fields() == {"countryId": "NG", "channel": "Retail"}
        assert context.query_fields(drop=frozenset({"channel"})) == {"countryId": "NG"}

    def test_cache_key_hashable_and_order_stable(self) -> None:
        left = ExecutionContext(country_id="NG", extra={"a": 1, "b": [1, 2]})
        right = ExecutionContext(country_id="NG", extra={"b": [1, 2], "a": 1})

        assert hash(left.cache_key()) == hash(right.cache_key())
        assert left.cache_key() == right.cache_key()
