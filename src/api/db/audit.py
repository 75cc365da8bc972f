"""Append-only access to the ``audit_logs`` table."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.api.db.errors import translate_errors
from src.saas.audit import AuditLogEntry


class AuditRepository:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def insert(self, entry: AuditLogEntry) -> None:
        async with translate_errors("insert_audit_log", action=entry.action):
            async with self._engine.begin() as conn:
                await conn.execute(
                    text(
                        """
                        INSERT INTO audit_logs
                            (id, tenant_id, action, entity_type, entity_id,
                             actor, old_values, new_values, created_at)
                        VALUES
                            (:id, :tid, :action, :etype, :eid,
                             :actor, CAST(:old AS JSONB), CAST(:new AS JSONB), :ts)
                        """
                    ),
                    {
                        "id": entry.entry_id,
                        "tid": entry.tenant_id,
                        "action": entry.action,
                        "etype": entry.resource_type,
                        "eid": entry.resource_id,
                        "actor": entry.actor,
                        "old": _json_or_none(entry.before),
                        "new": _json_or_none(entry.after),
                        "ts": entry.timestamp,
                    },
                )

    async def list(
        self,
        tenant_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """Newest-first audit entries, optionally for one tenant."""
        where = "WHERE tenant_id = :tid " if tenant_id else ""
        async with translate_errors("list_audit_logs", tenant_id=tenant_id):
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text(
                        f"SELECT * FROM audit_logs {where}"  # noqa: S608
                        "ORDER BY created_at DESC LIMIT :limit OFFSET :offset"
                    ),
                    {"tid": tenant_id, "limit": limit, "offset": offset},
                )
                rows = result.mappings().all()
        return [_row_to_entry(r) for r in rows]

    async def list_for_resource(
        self, resource_type: str, resource_id: str
    ) -> list[AuditLogEntry]:
        async with translate_errors("list_audit_for_resource", resource_id=resource_id):
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text(
                        "SELECT * FROM audit_logs "
                        "WHERE entity_type = :etype AND entity_id = :eid "
                        "ORDER BY created_at DESC"
                    ),
                    {"etype": resource_type, "eid": resource_id},
                )
                rows = result.mappings().all()
        return [_row_to_entry(r) for r in rows]


def _json_or_none(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _row_to_entry(r: Mapping[str, Any]) -> AuditLogEntry:
    before = r.get("old_values")
    after = r.get("new_values")
    if isinstance(before, str):
        before = json.loads(before)
    if isinstance(after, str):
        after = json.loads(after)
    return AuditLogEntry(
        entry_id=r["id"],
        action=r["action"],
        resource_type=r["entity_type"],
        resource_id=r["entity_id"],
        actor=r.get("actor"),
        tenant_id=r.get("tenant_id"),
        before=before,
        after=after,
        timestamp=r["created_at"],
    )
