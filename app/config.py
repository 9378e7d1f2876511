"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import TypeVar

from db.config import load_env_files

_BUNDLED_CATALOG_PATH = Path(__file__).resolve().parents[1] / "measures" / "catalog.json"


_T = TypeVar("_T")


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Load the project `.env` files before the first setting is read.
    """

    load_env_files()


def _read_env(name: str, default: _T, parse: Callable[[str], _T]) -> _T:
    """
    Parse one environment variable; unset, blank or unparsable values give *default*.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return parse(raw_value.strip())
    except ValueError:
        return default


def _get_int_env(name: str, default: int) -> int:
    return _read_env(name, default, int)


def _get_float_env(name: str, default: float) -> float:
    return _read_env(name, default, float)


def _get_str_env(name: str, default: str) -> str:
    return _read_env(name, default, str)


def _get_csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """
    Read a comma-separated list from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _get_code_map_env(name: str) -> dict[str, int]:
    """
    Read ``Name=code`` pairs separated by commas; malformed pairs are skipped.
    """

    codes: dict[str, int] = {}
    for item in _get_csv_env(name, ()):
        label, sep, code = item.rpartition("=")
        if not sep or not label.strip():
            continue
        try:
            codes[label.strip()] = int(code)
        except ValueError:
            continue
    return codes


@dataclass(frozen=True)
class EngineSettings:
    """
    Runtime settings for the measure calculation engine.

    Attributes
    ----------
    catalog_path:
        JSON measure catalog loaded at start-up.
    months_cover_horizon:
        Number of future months projected by forward-cover measures.
    months_cover_default:
        Cover reported when no future month has positive issuance.
    dateless_tables:
        Tables without a date dimension; no date range is sent to them.
    country_scoped_tables:
        Tables keyed by country only; the sku context field is dropped.
    doc_type_field:
        Categorical field always compared through numeric codes.
    case_insensitive_fields:
        Text fields whose equality ignores case and surrounding whitespace.
    doc_type_codes:
        Document-type name → code pairs for the default code lookup.
    """

    catalog_path: str = str(_BUNDLED_CATALOG_PATH)
    months_cover_horizon: int = 12
    months_cover_default: float = 12.0
    dateless_tables: frozenset[str] = frozenset({"targetCoverStock", "procurementSafeMargin"})
    country_scoped_tables: frozenset[str] = frozenset({"procurementSafeMargin"})
    doc_type_field: str = "docType"
    case_insensitive_fields: frozenset[str] = frozenset({"channel"})
    doc_type_codes: Mapping[str, int] = field(default_factory=dict)
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_engine_settings() -> EngineSettings:
    """
    Return cached engine settings from environment variables.
    """

    defaults = EngineSettings()
    return EngineSettings(
        catalog_path=_get_str_env("MEASURE_CATALOG_PATH", defaults.catalog_path),
        months_cover_horizon=max(1, _get_int_env("MONTHS_COVER_HORIZON", defaults.months_cover_horizon)),
        months_cover_default=max(0.0, _get_float_env("MONTHS_COVER_DEFAULT", defaults.months_cover_default)),
        dateless_tables=frozenset(_get_csv_env("DATELESS_TABLES", tuple(sorted(defaults.dateless_tables)))),
        country_scoped_tables=frozenset(
            _get_csv_env("COUNTRY_SCOPED_TABLES", tuple(sorted(defaults.country_scoped_tables)))
        ),
        doc_type_field=_get_str_env("DOC_TYPE_FIELD", defaults.doc_type_field),
        case_insensitive_fields=frozenset(
            _get_csv_env("CASE_INSENSITIVE_TEXT_FIELDS", tuple(sorted(defaults.case_insensitive_fields)))
        ),
        doc_type_codes=_get_code_map_env("DOC_TYPE_CODES"),
        log_level=_get_str_env("LOG_LEVEL", defaults.log_level).upper(),
    )
