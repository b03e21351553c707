"""Calendar API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler that opens and closes the calendar runtime
- Health endpoint at GET /api/health
- The ``/calendar`` router
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobai_calendar.api.deps import init_dependencies, shutdown_dependencies
from jobai_calendar.api.middleware import register_error_handlers
from jobai_calendar.api.routers.calendar import router as calendar_router
from jobai_calendar.config import AppConfig, load_config

logger = logging.getLogger(__name__)


def create_app(config: AppConfig | None = None, *, manage_runtime: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Application configuration.  Loaded via ``load_config()`` when omitted.
    manage_runtime:
        Open the database/provider runtime in the lifespan.  Tests pass False
        and supply dependencies through ``app.dependency_overrides``.
    """
    if config is None:
        config = load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_runtime:
            await init_dependencies(config)
        try:
            yield
        finally:
            if manage_runtime:
                await shutdown_dependencies()

    app = FastAPI(
        title="JobAI Calendar API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    if config.server.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.server.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_error_handlers(app)
    app.include_router(calendar_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
