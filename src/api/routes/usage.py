"""Usage ledger endpoints — per-tenant metric totals against plan limits."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from src.api.deps import get_audit_logger, get_ledger, get_resolver
from src.api.middleware import require_admin_key
from src.api.models.schemas import (
    OverLimitOut,
    UsageIncrement,
    UsageOut,
    UsageOverview,
    UsageSet,
)
from src.core.exceptions import TenantNotFoundError
from src.saas.audit import AuditAction, AuditLogger
from src.saas.resolver import TenantResolver
from src.saas.tenant import Tenant
from src.saas.usage import UsageLedger, UsageRecord

router = APIRouter(prefix="/usage", tags=["usage"])

_PERIOD = Query(default=None, pattern=r"^\d{4}-\d{2}$")


def _out(record: UsageRecord) -> UsageOut:
    return UsageOut.model_validate(record.to_dict())


async def _tenant(resolver: TenantResolver, identifier: str) -> Tenant:
    identity = await resolver.resolve(identifier)
    if identity.tenant is None:
        raise TenantNotFoundError(f"Tenant not found: {identifier}", {"identifier": identifier})
    return identity.tenant


@router.get("", response_model=list[UsageOut])
async def list_usage(
    tenant_id: str | None = None,
    _actor: str = Depends(require_admin_key),
    resolver: TenantResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
) -> list[UsageOut]:
    """Every usage record, optionally narrowed to one tenant by either identifier."""
    if tenant_id is None:
        return [_out(r) for r in await ledger.list_all()]
    tenant = await _tenant(resolver, tenant_id)
    return [_out(r) for r in await ledger.list_all(tenant.tenant_id)]


@router.get("/tenants/{identifier}", response_model=UsageOverview)
async def tenant_usage(
    identifier: str,
    period: str | None = _PERIOD,
    _actor: str = Depends(require_admin_key),
    resolver: TenantResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
) -> UsageOverview:
    """Usage of one tenant for a period, with limits reconciled to its plan."""
    tenant = await _tenant(resolver, identifier)
    p = period or ledger.current_period()
    records = await ledger.reconcile(tenant.tenant_id, tenant.plan, p)
    return UsageOverview(
        tenant_id=tenant.tenant_id,
        plan=tenant.plan.value,
        period=p,
        metrics=[_out(r) for r in records],
    )


@router.post("/tenants/{identifier}/{metric}/increment", response_model=UsageOut)
async def increment_usage(
    identifier: str,
    metric: str,
    body: UsageIncrement,
    _actor: str = Depends(require_admin_key),
    resolver: TenantResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
) -> UsageOut:
    tenant = await _tenant(resolver, identifier)
    record = await ledger.increment(
        tenant.tenant_id, metric, body.amount, limit=body.limit, period=body.period
    )
    return _out(record)


@router.put("/tenants/{identifier}/{metric}", response_model=UsageOut)
async def set_usage(
    identifier: str,
    metric: str,
    body: UsageSet,
    _actor: str = Depends(require_admin_key),
    resolver: TenantResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
) -> UsageOut:
    tenant = await _tenant(resolver, identifier)
    record = await ledger.record(
        tenant.tenant_id, metric, body.value, limit=body.limit, period=body.period
    )
    return _out(record)


@router.get("/tenants/{identifier}/{metric}/over-limit", response_model=OverLimitOut)
async def over_limit(
    identifier: str,
    metric: str,
    period: str | None = _PERIOD,
    _actor: str = Depends(require_admin_key),
    resolver: TenantResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
) -> OverLimitOut:
    tenant = await _tenant(resolver, identifier)
    p = period or ledger.current_period()
    return OverLimitOut(
        tenant_id=tenant.tenant_id,
        metric=metric,
        period=p,
        over_limit=await ledger.is_over_limit(tenant.tenant_id, metric, p),
    )


@router.post("/tenants/{identifier}/reset", response_model=list[UsageOut])
async def reset_usage(
    identifier: str,
    period: str | None = _PERIOD,
    actor: str = Depends(require_admin_key),
    resolver: TenantResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
    audit: AuditLogger = Depends(get_audit_logger),
) -> list[UsageOut]:
    tenant = await _tenant(resolver, identifier)
    p = period or ledger.current_period()
    records = await ledger.reset(tenant.tenant_id, p)
    await audit.log(
        AuditAction.USAGE_RESET,
        "usage",
        tenant.tenant_id,
        actor=actor,
        tenant_id=tenant.uuid or tenant.tenant_id,
        after={"period": p, "metrics": [r.metric for r in records]},
    )
    return [_out(r) for r in records]


@router.delete("/tenants/{identifier}")
async def delete_usage(
    identifier: str,
    period: str | None = _PERIOD,
    actor: str = Depends(require_admin_key),
    resolver: TenantResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
    audit: AuditLogger = Depends(get_audit_logger),
) -> dict[str, object]:
    tenant = await _tenant(resolver, identifier)
    p = period or ledger.current_period()
    removed = await ledger.delete(tenant.tenant_id, p)
    await audit.log(
        AuditAction.USAGE_DELETED,
        "usage",
        tenant.tenant_id,
        actor=actor,
        tenant_id=tenant.uuid or tenant.tenant_id,
        before={"period": p, "records": removed},
    )
    return {"tenant_id": tenant.tenant_id, "period": p, "deleted": removed}
