"""
FastAPI application entry point.
"""
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fundperiods import __version__
from fundperiods.core.config import settings
from fundperiods.core.logging_config import get_main_logger
from fundperiods.core.exceptions import register_exception_handlers
from fundperiods.api.v1.funds import router as funds_router
from fundperiods.api.v1.sync import router as sync_router
from fundperiods.db.database import engine, init_db
from fundperiods.services.background import BackgroundSync
from fundperiods.services.store import FundStore

logger = get_main_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables on startup
    await init_db(engine)

    http_client = httpx.AsyncClient(timeout=settings.request_timeout)
    app.state.store = FundStore(engine)
    app.state.background_sync = BackgroundSync(settings, app.state.store, http_client)
    logger.info(f"Serving fund periods from {engine.url.render_as_string(hide_password=True)}")

    yield

    await app.state.background_sync.cancel()
    await http_client.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="Fund Periods API",
        description="Rolling 1/5/10-year period returns for funds",
        version=__version__,
        lifespan=lifespan
    )

    # Register global exception handlers
    register_exception_handlers(app)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(funds_router, prefix=settings.api_v1_prefix)
    app.include_router(sync_router, prefix=settings.api_v1_prefix)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": "Fund Periods API", "version": __version__}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
