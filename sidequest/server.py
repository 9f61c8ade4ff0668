"""FastAPI application for the Sidequest engine.

Run with ``uvicorn sidequest.server:app``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sidequest import __version__
from sidequest.c1_database_session.database_manager import get_manager
from sidequest.c3_health_routes.health_routes import router as health_router
from sidequest.c3_sidequest_routes import create_sidequest_router
from sidequest.core.config import get_settings
from sidequest.interfaces.llm_interface import close_llm_provider

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; close the shared oracle client on shutdown."""
    logger.info("Starting Sidequest API...")
    get_manager().create_tables()
    yield
    await close_llm_provider()
    logger.info("Sidequest API stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Sidequest API",
        description="Ticket hierarchy, sprint planning and implementation orchestration",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )

    if settings.api.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health_router)
    app.include_router(create_sidequest_router())
    return app


app = create_app()
