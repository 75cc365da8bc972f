"""PostgreSQL connection and schema definitions."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    MetaData,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config.settings import get_settings
from src.core.logging import get_logger

log = get_logger(__name__)

metadata = MetaData()

# ── Tables ───────────────────────────────────────────────────────

tenants = Table(
    "tenants",
    metadata,
    Column("id", UUID(as_uuid=False), primary_key=True),
    Column("name", String, nullable=False),
    Column("status", String, nullable=False, index=True),
    Column("mrr", Float, nullable=False, server_default="0"),
    Column("settings", JSONB, nullable=False, server_default="{}"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True)),
)

plans = Table(
    "plans",
    metadata,
    Column("name", String, primary_key=True),
    Column("price", Float, nullable=False, server_default="0"),
    Column("limits", JSONB, nullable=False, server_default="{}"),
    Column("features", JSONB, nullable=False, server_default="[]"),
)

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", String, primary_key=True),
    Column("tenant_id", String, index=True),
    Column("action", String, nullable=False, index=True),
    Column("entity_type", String, nullable=False),
    Column("entity_id", String, nullable=False, index=True),
    Column("actor", String),
    Column("old_values", JSONB),
    Column("new_values", JSONB),
    Column("note", Text),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
)


# ── Engine ───────────────────────────────────────────────────────

_engine: AsyncEngine | None = None


async def get_engine() -> AsyncEngine:
    """Get or create the async database engine (singleton)."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        settings = get_settings()
        db_url = settings.database_url.get_secret_value()
        _engine = create_async_engine(
            db_url,
            echo=False,
            pool_size=10,
            max_overflow=20,
        )
        log.info("database_engine_created", host=db_url.split("@")[-1].split("?")[0])
    return _engine


async def init_schema() -> None:
    """Create all tables plus the JSONB index used by external-code lookups."""
    engine = await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
        await conn.execute(
            text(
                "CREATE UNIQUE INDEX IF NOT EXISTS ix_tenants_external_id "
                "ON tenants ((settings->>'external_id'))"
            )
        )

    log.info("schema_initialized")


async def close_engine() -> None:
    """Dispose the database engine."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        log.info("database_engine_closed")
