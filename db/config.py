"""
db/config.py

Environment-driven configuration for the measure source database.

URL lookup order
----------------
1. MEASURE_DATABASE_URL  – dedicated warehouse for measure tables
2. DATABASE_URL          – shared application database
3. LOCAL_DATABASE_URL    – developer fallback

``postgres://`` and ``postgresql://`` URLs are rewritten to the psycopg 3
driver.  Any other SQLAlchemy URL (e.g. ``sqlite:///measures.db``) is used
unchanged.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DATABASE_URL_VARIABLES: tuple[str, ...] = (
    "MEASURE_DATABASE_URL",
    "DATABASE_URL",
    "LOCAL_DATABASE_URL",
)

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def _parse_env_line(raw_line: str) -> tuple[str, str] | None:
    line = raw_line.strip()
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    if not key:
        return None
    return key, value.strip().strip('"').strip("'")


def load_env_files(root: Path | None = None) -> None:
    """
    Load ``KEY=VALUE`` pairs from ``.env`` and ``.env.local`` under *root*.

    Variables already present in the process environment win.
    """

    base = root or _PROJECT_ROOT
    for filename in (".env", ".env.local"):
        env_path = base / filename
        if not env_path.is_file():
            continue
        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_env_line(raw_line)
            if parsed is not None:
                os.environ.setdefault(*parsed)


def normalize_database_url(url: str) -> str:
    """
    Rewrite bare postgres URLs to the ``postgresql+psycopg`` dialect.
    """

    url = url.strip()
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def _first_configured_url() -> str | None:
    load_env_files()
    for name in DATABASE_URL_VARIABLES:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return None


def database_configured() -> bool:
    """
    ``True`` when any of :data:`DATABASE_URL_VARIABLES` is set.
    """

    return _first_configured_url() is not None


def resolve_database_url() -> str:
    """
    Return the normalized database URL for measure tables.

    Raises
    ------
    RuntimeError
        If none of :data:`DATABASE_URL_VARIABLES` is set.
    """

    url = _first_configured_url()
    if url is None:
        raise RuntimeError(
            "No database URL configured. Set one of: " + ", ".join(DATABASE_URL_VARIABLES)
        )
    return normalize_database_url(url)


def _get_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _get_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class DatabaseSettings:
    """
    Engine options for the measure source database.

    Pool options are ignored for SQLite URLs.
    """

    url: str
    echo: bool = False
    pool_recycle: int = 1800
    pool_size: int = 5
    max_overflow: int = 10

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


def get_database_settings(database_url: str | None = None) -> DatabaseSettings:
    """
    Build :class:`DatabaseSettings` from the environment.

    *database_url* overrides the URL lookup when given.
    """

    url = normalize_database_url(database_url) if database_url else resolve_database_url()
    defaults = DatabaseSettings(url=url)
    return DatabaseSettings(
        url=url,
        echo=_get_bool_env("SQL_ECHO", defaults.echo),
        pool_recycle=max(-1, _get_int_env("DB_POOL_RECYCLE", defaults.pool_recycle)),
        pool_size=max(1, _get_int_env("DB_POOL_SIZE", defaults.pool_size)),
        max_overflow=max(0, _get_int_env("DB_MAX_OVERFLOW", defaults.max_overflow)),
    )
