"""Health check endpoint — no auth required."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import get_settings
from src.api.deps import get_db_engine, get_kv_store
from src.api.models.schemas import HealthResponse
from src.core.interfaces import KeyPrefixStore
from src.core.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


async def _database_ok(engine: AsyncEngine) -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        log.warning("health_database_down", error=str(exc))
        return False
    return True


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: KeyPrefixStore = Depends(get_kv_store),
    engine: AsyncEngine = Depends(get_db_engine),
) -> HealthResponse:
    settings = get_settings()
    backends = {
        "kv": await store.ping(),
        "database": await _database_ok(engine),
    }
    return HealthResponse(
        status="ok" if all(backends.values()) else "degraded",
        version="0.1.0",
        environment=settings.hms_env,
        backends=backends,
    )
