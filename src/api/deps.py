"""FastAPI dependency injection — shared instances for routes."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import get_settings
from src.api.db.audit import AuditRepository
from src.api.db.plans import PlanRepository
from src.api.db.tenants import TenantRepository
from src.core.interfaces import KeyPrefixStore
from src.data.db import get_engine
from src.data.kv_store import get_store
from src.saas.admin import TenantAdminService
from src.saas.audit import AuditLogger
from src.saas.features import FeatureFlagService
from src.saas.plans import PlanCatalog
from src.saas.resolver import TenantResolver
from src.saas.usage import UsageLedger

# ── Backends ──────────────────────────────────────────────────────


async def get_db_engine() -> AsyncEngine:
    """Provide the async database engine."""
    return await get_engine()


async def get_kv_store() -> KeyPrefixStore:
    """Provide the shared key-value store."""
    return await get_store()


# ── Repositories ──────────────────────────────────────────────────


async def get_tenant_repo(
    engine: AsyncEngine = Depends(get_db_engine),
) -> TenantRepository:
    return TenantRepository(engine)


async def get_audit_repo(
    engine: AsyncEngine = Depends(get_db_engine),
) -> AuditRepository:
    return AuditRepository(engine)


async def get_plan_catalog(
    engine: AsyncEngine = Depends(get_db_engine),
) -> PlanCatalog:
    return PlanCatalog(PlanRepository(engine))


# ── Services ──────────────────────────────────────────────────────


async def get_audit_logger(
    repo: AuditRepository = Depends(get_audit_repo),
) -> AuditLogger:
    return AuditLogger(repo)


async def get_resolver(
    store: KeyPrefixStore = Depends(get_kv_store),
    tenants: TenantRepository = Depends(get_tenant_repo),
) -> TenantResolver:
    return TenantResolver(store, tenants)


async def get_ledger(
    store: KeyPrefixStore = Depends(get_kv_store),
    plans: PlanCatalog = Depends(get_plan_catalog),
    resolver: TenantResolver = Depends(get_resolver),
) -> UsageLedger:
    return UsageLedger(
        store, plans, resolver, default_limit=get_settings().default_usage_limit
    )


async def get_flag_service(
    store: KeyPrefixStore = Depends(get_kv_store),
    audit: AuditLogger = Depends(get_audit_logger),
) -> FeatureFlagService:
    return FeatureFlagService(store, audit)


async def get_admin_service(
    store: KeyPrefixStore = Depends(get_kv_store),
    resolver: TenantResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
    tenants: TenantRepository = Depends(get_tenant_repo),
    audit: AuditLogger = Depends(get_audit_logger),
) -> TenantAdminService:
    return TenantAdminService(store, resolver, ledger, tenants, audit)
