"""
tests/conftest.py

Shared fixtures for the measure engine tests.
"""

from __future__ import annotations

from typing import Any

import pytest

from app.config import EngineSettings
from app.connectors.in_memory import StaticCodeLookup
from tests.helpers import DOC_TYPE_CODES


@pytest.fixture()
def settings() -> EngineSettings:
    """Default settings, independent of the process environment."""
    return EngineSettings()


@pytest.fixture()
def code_lookup() -> StaticCodeLookup:
    return StaticCodeLookup(DOC_TYPE_CODES)


@pytest.fixture()
def sales_rows() -> list[dict[str, Any]]:
    """Raw movements for June 2024 plus one May row outside the default month."""
    return [
        {"date": "2024-06-03", "docType": 1, "stockOutQty": 100, "channel": "Retail", "countryId": "NG"},
        {"date": "2024-06-10", "docType": 1, "stockOutQty": 50, "channel": "Hospital", "countryId": "NG"},
        {"date": "2024-06-12", "docType": 2, "stockOutQty": 30, "channel": "Retail", "countryId": "NG"},
        {"date": "2024-05-20", "docType": 1, "stockOutQty": 999, "channel": "Retail", "countryId": "NG"},
    ]
