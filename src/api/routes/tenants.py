"""Tenant administration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from src.api.deps import get_admin_service
from src.api.middleware import require_admin_key
from src.api.models.schemas import (
    SettingsUpdate,
    SuspendRequest,
    TenantCreate,
    TenantCreateOut,
    TenantOut,
    TenantPage,
    TenantStats,
    TenantUpdate,
)
from src.core.constants import DEFAULT_PAGE_SIZE
from src.core.types import SortOrder, TenantFilters, TenantStatus
from src.saas.admin import TenantAdminService
from src.saas.tenant import Tenant

router = APIRouter(prefix="/tenants", tags=["tenants"])


def _out(tenant: Tenant) -> TenantOut:
    return TenantOut.model_validate(tenant.to_dict())


@router.get("", response_model=TenantPage)
async def list_tenants(
    status_: str | None = Query(default=None, alias="status"),
    plan: str | None = None,
    region: str | None = None,
    search: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    sort_by: str | None = "created_at",
    order: SortOrder = SortOrder.DESC,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=500),
    _actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> TenantPage:
    filters = TenantFilters(
        status=status_,
        plan=plan,
        region=region,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )
    result = await service.list(filters, sort_by, order, page, limit)
    return TenantPage(
        data=[_out(t) for t in result.data],
        page=result.page,
        limit=result.limit,
        total=result.total,
        total_pages=result.total_pages,
        has_next=result.has_next,
        has_prev=result.has_prev,
    )


@router.get("/stats", response_model=TenantStats)
async def tenant_stats(
    _actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> TenantStats:
    return TenantStats(**await service.stats())


@router.post("", response_model=TenantCreateOut, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: TenantCreate,
    response: Response,
    actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> TenantCreateOut:
    """Create a tenant. Partial backend failures answer 207 with warnings."""
    result = await service.create(
        body.name,
        body.subdomain,
        body.plan,
        body.tenant_email,
        region=body.region,
        billing_entity=body.billing_entity,
        owner_name=body.owner_name,
        owner_email=body.owner_email,
        tenant_phone=body.tenant_phone,
        actor=actor,
    )
    if not result.complete:
        response.status_code = status.HTTP_207_MULTI_STATUS
    return TenantCreateOut(
        success=result.complete,
        data=_out(result.tenant),
        warnings=result.warnings,
    )


@router.get("/{identifier}", response_model=TenantOut)
async def get_tenant(
    identifier: str,
    _actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> TenantOut:
    return _out(await service.get(identifier))


@router.put("/{identifier}", response_model=TenantOut)
async def update_tenant(
    identifier: str,
    body: TenantUpdate,
    actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> TenantOut:
    changes = body.model_dump(exclude_unset=True, mode="json")
    return _out(await service.update(identifier, changes, actor=actor))


@router.get("/{identifier}/settings")
async def get_tenant_settings(
    identifier: str,
    _actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> dict[str, object]:
    tenant = await service.get(identifier)
    return {"tenant_id": tenant.tenant_id, "settings": tenant.settings}


@router.put("/{identifier}/settings", response_model=TenantOut)
async def update_tenant_settings(
    identifier: str,
    body: SettingsUpdate,
    actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> TenantOut:
    return _out(await service.update_settings(identifier, body.patch(), actor=actor))


@router.post("/{identifier}/suspend", response_model=TenantOut)
async def suspend_tenant(
    identifier: str,
    body: SuspendRequest | None = None,
    actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> TenantOut:
    reason = body.reason if body else None
    tenant = await service.set_status(identifier, TenantStatus.SUSPENDED, reason, actor=actor)
    return _out(tenant)


@router.post("/{identifier}/unsuspend", response_model=TenantOut)
async def unsuspend_tenant(
    identifier: str,
    actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> TenantOut:
    return _out(await service.set_status(identifier, TenantStatus.ACTIVE, actor=actor))


@router.delete("/{identifier}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tenant(
    identifier: str,
    actor: str = Depends(require_admin_key),
    service: TenantAdminService = Depends(get_admin_service),
) -> Response:
    await service.delete(identifier, actor=actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
