"""DB-backed tenant repository — the system of record for tenants."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.api.db.errors import translate_errors
from src.core.logging import get_logger
from src.core.types import TenantStatus
from src.saas.tenant import Tenant, tenant_from_row

log = get_logger(__name__)


class TenantRepository:
    """Async PostgreSQL-backed tenant storage."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def find_by_uuid(self, uuid: str) -> Tenant | None:
        """Look up a tenant by primary key."""
        async with translate_errors("find_by_uuid", uuid=uuid):
            async with self._engine.begin() as conn:
                row = await conn.execute(
                    text("SELECT * FROM tenants WHERE id = CAST(:id AS uuid)"),
                    {"id": uuid},
                )
                r = row.mappings().first()
        return None if r is None else tenant_from_row(r)

    async def find_by_external_id(self, code: str) -> Tenant | None:
        """Look up a tenant by the external code stored in its settings."""
        async with translate_errors("find_by_external_id", code=code):
            async with self._engine.begin() as conn:
                row = await conn.execute(
                    text(
                        "SELECT * FROM tenants "
                        "WHERE settings->>'external_id' = :code LIMIT 1"
                    ),
                    {"code": code},
                )
                r = row.mappings().first()
        return None if r is None else tenant_from_row(r)

    async def list_all(self) -> list[Tenant]:
        """All tenants, newest first."""
        async with translate_errors("list_tenants"):
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text("SELECT * FROM tenants ORDER BY created_at DESC")
                )
                rows = result.mappings().all()
        return [tenant_from_row(r) for r in rows]

    async def insert(self, tenant: Tenant) -> None:
        """Insert a new tenant row. ``tenant.uuid`` must be set."""
        now = tenant.created_at or datetime.now(timezone.utc)
        async with translate_errors("insert_tenant", uuid=tenant.uuid):
            async with self._engine.begin() as conn:
                await conn.execute(
                    text(
                        """
                        INSERT INTO tenants
                            (id, name, status, mrr, settings, created_at, updated_at)
                        VALUES
                            (CAST(:id AS uuid), :name, :status, :mrr,
                             CAST(:settings AS JSONB), :now, :updated_at)
                        """
                    ),
                    {
                        "id": tenant.uuid,
                        "name": tenant.name,
                        "status": tenant.status.value,
                        "mrr": tenant.mrr,
                        "settings": json.dumps(tenant.settings, default=str),
                        "now": now,
                        "updated_at": tenant.updated_at or now,
                    },
                )
        log.info("tenant_row_inserted", tenant_id=tenant.tenant_id, uuid=tenant.uuid)

    async def merge_settings(
        self, uuid: str, patch: dict[str, Any], *, updated_at: datetime | None = None
    ) -> Tenant | None:
        """Shallow-merge ``patch`` into the settings column; return the new row."""
        async with translate_errors("merge_settings", uuid=uuid):
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text(
                        "UPDATE tenants SET "
                        "settings = COALESCE(settings, '{}'::jsonb) || CAST(:patch AS JSONB), "
                        "updated_at = :now "
                        "WHERE id = CAST(:id AS uuid) RETURNING *"
                    ),
                    {
                        "id": uuid,
                        "patch": json.dumps(patch, default=str),
                        "now": updated_at or datetime.now(timezone.utc),
                    },
                )
                r = result.mappings().first()
        return None if r is None else tenant_from_row(r)

    async def update_columns(
        self,
        uuid: str,
        *,
        name: str | None = None,
        status: TenantStatus | None = None,
        mrr: float | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        """Update top-level columns that are not part of the settings bag."""
        updates: dict[str, object] = {}
        if name is not None:
            updates["name"] = name
        if status is not None:
            updates["status"] = status.value
        if mrr is not None:
            updates["mrr"] = mrr
        if not updates and updated_at is None:
            return

        updates["updated_at"] = updated_at or datetime.now(timezone.utc)
        set_clause = ", ".join(f"{k} = :{k}" for k in updates)
        updates["id"] = uuid

        async with translate_errors("update_tenant_columns", uuid=uuid):
            async with self._engine.begin() as conn:
                await conn.execute(
                    text(
                        f"UPDATE tenants SET {set_clause} "  # noqa: S608
                        "WHERE id = CAST(:id AS uuid)"
                    ),
                    updates,
                )

    async def delete(self, uuid: str) -> bool:
        """Delete the tenant row. Returns False when no row matched."""
        async with translate_errors("delete_tenant", uuid=uuid):
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text("DELETE FROM tenants WHERE id = CAST(:id AS uuid)"),
                    {"id": uuid},
                )
        return bool(result.rowcount)
