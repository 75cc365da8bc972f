"""Feature flag endpoints — CRUD, overrides and per-tenant evaluation."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from src.api.deps import get_flag_service, get_resolver
from src.api.middleware import require_admin_key
from src.api.models.schemas import (
    FlagCheckOut,
    FlagCreate,
    FlagOut,
    FlagUpdate,
    PlanEntitlement,
    TenantFeatureOut,
    TenantOverride,
)
from src.core.exceptions import TenantNotFoundError
from src.core.types import FlagScope
from src.saas.features import FeatureFlag, FeatureFlagService
from src.saas.resolver import TenantResolver

router = APIRouter(prefix="/features", tags=["features"])


def _out(flag: FeatureFlag) -> FlagOut:
    return FlagOut.model_validate(flag.to_dict())


@router.get("", response_model=list[FlagOut])
async def list_flags(
    _actor: str = Depends(require_admin_key),
    flags: FeatureFlagService = Depends(get_flag_service),
) -> list[FlagOut]:
    return [_out(f) for f in await flags.list()]


@router.post("", response_model=FlagOut, status_code=status.HTTP_201_CREATED)
async def create_flag(
    body: FlagCreate,
    actor: str = Depends(require_admin_key),
    flags: FeatureFlagService = Depends(get_flag_service),
) -> FlagOut:
    return _out(await flags.create(body.model_dump(mode="json"), actor=actor))


@router.put("/{flag_id}", response_model=FlagOut)
async def update_flag(
    flag_id: str,
    body: FlagUpdate,
    actor: str = Depends(require_admin_key),
    flags: FeatureFlagService = Depends(get_flag_service),
) -> FlagOut:
    changes = body.model_dump(exclude_unset=True, mode="json")
    return _out(await flags.update(flag_id, changes, actor=actor))


@router.delete("/{flag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_flag(
    flag_id: str,
    actor: str = Depends(require_admin_key),
    flags: FeatureFlagService = Depends(get_flag_service),
) -> Response:
    await flags.delete(flag_id, actor=actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{key}/tenants", response_model=FlagOut)
async def set_tenant_override(
    key: str,
    body: TenantOverride,
    actor: str = Depends(require_admin_key),
    flags: FeatureFlagService = Depends(get_flag_service),
) -> FlagOut:
    """Force the flag on or off for one tenant; ``enabled: null`` clears it."""
    flag = await flags.set_tenant_override(key, body.tenant_id, body.enabled, actor=actor)
    return _out(flag)


@router.post("/{key}/plans", response_model=FlagOut)
async def set_plan_entitlement(
    key: str,
    body: PlanEntitlement,
    actor: str = Depends(require_admin_key),
    flags: FeatureFlagService = Depends(get_flag_service),
) -> FlagOut:
    flag = await flags.set_plan_entitlement(key, body.plan, body.enabled, actor=actor)
    return _out(flag)


@router.get("/tenants/{identifier}", response_model=list[TenantFeatureOut])
async def tenant_features(
    identifier: str,
    _actor: str = Depends(require_admin_key),
    resolver: TenantResolver = Depends(get_resolver),
    flags: FeatureFlagService = Depends(get_flag_service),
) -> list[TenantFeatureOut]:
    """Every flag evaluated for one tenant under its current plan."""
    identity = await resolver.resolve(identifier)
    return [
        TenantFeatureOut(
            id=flag.flag_id,
            key=flag.key,
            name=flag.name,
            description=flag.description,
            category=flag.category,
            scope=flag.scope.value,
            enabled=decision.enabled,
            rule=decision.rule.value,
            plan_locked=flag.scope is FlagScope.PLAN,
        )
        for flag, decision in await flags.features_for(identity)
    ]


@router.get("/{key}/check/{identifier}", response_model=FlagCheckOut)
async def check_flag(
    key: str,
    identifier: str,
    _actor: str = Depends(require_admin_key),
    resolver: TenantResolver = Depends(get_resolver),
    flags: FeatureFlagService = Depends(get_flag_service),
) -> FlagCheckOut:
    identity = await resolver.resolve(identifier)
    tenant = identity.tenant
    if tenant is None:
        raise TenantNotFoundError(f"Tenant not found: {identifier}", {"identifier": identifier})
    aliases = [i for i in tenant.identifiers if i != tenant.tenant_id]
    enabled = await flags.is_enabled(key, tenant.tenant_id, tenant.plan, aliases)
    return FlagCheckOut(key=key, tenant_id=tenant.tenant_id, enabled=enabled)
