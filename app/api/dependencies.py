"""
app/api/dependencies.py

Shared FastAPI dependencies for the measure endpoints.

The orchestrator is built on first use and kept on ``app.state`` so that
importing the application never touches the database.  Tests install
their own orchestrator through :func:`create_app` or by setting
``app.state.orchestrator`` directly.
"""

from __future__ import annotations

import logging

from fastapi import Request

from app.config import EngineSettings, get_engine_settings
from app.connectors.base import TableDataSource
from app.connectors.in_memory import InMemoryTableSource, StaticCodeLookup
from app.connectors.sql_table_source import SqlTableSource
from app.services.calculation_engine import CalculationEngine
from app.services.calculation_orchestrator import CalculationOrchestrator
from db.config import database_configured
from measures.loader import load_default_registry

logger = logging.getLogger(__name__)


def build_default_source() -> TableDataSource:
    """
    SQL table source when a database URL is configured, else an empty in-memory source.
    """

    if database_configured():
        from db.session import get_engine

        return SqlTableSource(get_engine())

    logger.warning("No database URL configured; measures will read from an empty in-memory source")
    return InMemoryTableSource()


def build_default_orchestrator(settings: EngineSettings | None = None) -> CalculationOrchestrator:
    """
    Build an orchestrator from environment settings and the configured catalog.
    """

    settings = settings or get_engine_settings()
    registry = load_default_registry(settings.catalog_path)
    code_lookup = StaticCodeLookup(settings.doc_type_codes) if settings.doc_type_codes else None
    engine = CalculationEngine(
        registry,
        build_default_source(),
        code_lookup=code_lookup,
        settings=settings,
    )
    logger.info("Measure orchestrator ready with %d measures", len(registry))
    return CalculationOrchestrator(engine)


def get_orchestrator(request: Request) -> CalculationOrchestrator:
    """
    Return the application's orchestrator, building the default one on first use.
    """

    state = request.app.state
    orchestrator = getattr(state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = build_default_orchestrator()
        state.orchestrator = orchestrator
    return orchestrator
