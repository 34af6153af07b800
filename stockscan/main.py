"""
==============================================================================
Stock Scanner - Application Entry Point
==============================================================================

FastAPI application with:
- REST inventory endpoints (lookup, create, idempotent transactions)
- WebSocket scanning sessions (browser or server camera)
- SQLite inventory seeded from the product catalog

Usage:
------
    # Development
    uvicorn stockscan.main:app --reload

    # Production
    uvicorn stockscan.main:app --host 0.0.0.0 --port 8000

==============================================================================
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stockscan import __version__
from stockscan.api.router import api_router
from stockscan.config import get_settings
from stockscan.core.exceptions import register_exception_handlers
from stockscan.db import get_database_manager, init_db
from stockscan.websockets import scanner_router


# ============================================================================
# LOGGING SETUP
# ============================================================================

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

logger = logging.getLogger(__name__)


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

class Application:
    """
    Builds the scanner service: REST inventory routes, the /ws/scan
    socket, CORS and AppException handlers. The local inventory is
    created (and seeded) on startup and its engine disposed on shutdown.
    """

    def __init__(self):
        self._settings = get_settings()
        self._app = self._create_app()

    def _create_app(self) -> FastAPI:
        app = FastAPI(
            title=self._settings.app_name,
            version=__version__,
            description="Camera scanning with idempotent inventory transactions",
            lifespan=self._lifespan,
            docs_url="/docs",
            redoc_url="/redoc",
        )

        self._configure_middleware(app)
        register_exception_handlers(app)
        self._register_routers(app)
        self._register_root(app)

        return app

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        self._startup()
        yield
        self._shutdown()

    def _startup(self) -> None:
        logger.info("=" * 60)
        logger.info(f"🚀 Starting {self._settings.app_name}")
        logger.info("=" * 60)

        # Tables and seed catalog for the local inventory
        init_db()

        logger.info("=" * 60)
        logger.info(f"✅ {self._settings.app_name} ready")
        logger.info(f"📍 Running on http://{self._settings.host}:{self._settings.port}")
        logger.info(f"📦 Inventory backend: {self._settings.inventory_backend}")
        logger.info(f"📖 API Docs: http://{self._settings.host}:{self._settings.port}/docs")
        logger.info("=" * 60)

    def _shutdown(self) -> None:
        logger.info("🛑 Shutting down...")
        get_database_manager().dispose()
        logger.info("✅ Shutdown complete")

    def _configure_middleware(self, app: FastAPI) -> None:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self._settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _register_routers(self, app: FastAPI) -> None:
        # /api/v1/health, /api/v1/inventory
        app.include_router(api_router)

        # /ws/scan
        app.include_router(scanner_router)

    def _register_root(self, app: FastAPI) -> None:
        @app.get("/")
        async def root():
            return {
                "name": self._settings.app_name,
                "version": __version__,
                "docs": "/docs",
                "scanner": "/ws/scan",
            }

    @property
    def app(self) -> FastAPI:
        return self._app


# ============================================================================
# APPLICATION INSTANCE
# ============================================================================

application = Application()
app = application.app


# ============================================================================
# ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "stockscan.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
