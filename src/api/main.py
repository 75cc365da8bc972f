"""HMS admin FastAPI application — entry point for the API server."""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI

from config.settings import get_settings
from src.api.errors import register_error_handlers
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, get_engine
from src.data.kv_store import close_store, get_store

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup/shutdown lifecycle — open both backends, close on exit."""
    log.info("api_starting")
    await get_engine()
    await get_store()
    yield
    await close_store()
    await close_engine()
    log.info("api_shutdown")


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    settings = get_settings()
    setup_logging(json_output=settings.log_json, level=settings.log_level)

    app = FastAPI(
        title="HMS Admin API",
        description="Tenant identity, usage ledger and feature rollout",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)

    # Register routers
    from src.api.routes.audit import router as audit_router
    from src.api.routes.features import router as features_router
    from src.api.routes.health import router as health_router
    from src.api.routes.tenants import router as tenants_router
    from src.api.routes.usage import router as usage_router

    app.include_router(health_router, prefix="/api")
    app.include_router(tenants_router, prefix="/api")
    app.include_router(usage_router, prefix="/api")
    app.include_router(features_router, prefix="/api")
    app.include_router(audit_router, prefix="/api")

    return app


app = create_app()
