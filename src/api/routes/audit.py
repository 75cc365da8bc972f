"""Audit log listing."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from src.api.deps import get_audit_repo
from src.api.db.audit import AuditRepository
from src.api.middleware import require_admin_key
from src.api.models.schemas import AuditLogOut

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=list[AuditLogOut])
async def list_audit_logs(
    tenant_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _actor: str = Depends(require_admin_key),
    repo: AuditRepository = Depends(get_audit_repo),
) -> list[AuditLogOut]:
    """Newest-first entries for a tenant, a single resource, or everything."""
    if resource_type and resource_id:
        entries = await repo.list_for_resource(resource_type, resource_id)
    else:
        entries = await repo.list(tenant_id, limit=limit, offset=offset)
    return [AuditLogOut.model_validate(asdict(e)) for e in entries]
