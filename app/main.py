from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import Depends, FastAPI

from app.api.dependencies import get_orchestrator
from app.config import get_engine_settings
from app.services.calculation_orchestrator import CalculationOrchestrator


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = get_engine_settings().log_level
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Release pooled database connections on shutdown."""
    try:
        yield
    finally:
        from db.session import dispose_engine

        dispose_engine()
        logging.getLogger(__name__).info("Database engine disposed")


def create_app(orchestrator: CalculationOrchestrator | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    *orchestrator* is used as-is when given; otherwise the default one is
    built from the environment on the first request that needs it.
    """

    _configure_logging()

    application = FastAPI(
        title="Measure Engine API",
        version="1.0.0",
        lifespan=_lifespan,
    )
    application.state.orchestrator = orchestrator

    from app.api.routers import measures_router

    application.include_router(measures_router)

    @application.get("/health")
    def healthcheck(
        current: CalculationOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, object]:
        return {"status": "ok", "measures": len(current.registry)}

    return application


app = create_app()
