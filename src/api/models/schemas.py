"""Pydantic V2 request/response schemas for the admin API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from src.core.types import FlagScope, FlagStatus, TenantStatus

_EMAIL = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


# ── Tenants ──────────────────────────────────────────────────────

class TenantCreate(BaseModel):
    """Request body for creating a tenant."""

    name: str = Field(..., min_length=1, max_length=200)
    subdomain: str = Field(..., min_length=1, max_length=63)
    plan: str = "Trial"
    tenant_email: str = Field(..., pattern=_EMAIL)
    region: str | None = None
    billing_entity: str | None = None
    owner_name: str | None = None
    owner_email: str | None = Field(default=None, pattern=_EMAIL)
    tenant_phone: str | None = None

    @model_validator(mode="after")
    def _owner_pair(self) -> "TenantCreate":
        if bool(self.owner_name) != bool(self.owner_email):
            msg = "owner_name and owner_email must be given together"
            raise ValueError(msg)
        return self


class TenantUpdate(BaseModel):
    name: str | None = None
    plan: str | None = None
    status: TenantStatus | None = None
    mrr: float | None = Field(default=None, ge=0)
    subdomain: str | None = None
    region: str | None = None
    tenant_email: str | None = Field(default=None, pattern=_EMAIL)
    owner_email: str | None = Field(default=None, pattern=_EMAIL)
    owner_name: str | None = None
    billing_entity: str | None = None


class SettingsUpdate(BaseModel):
    """Either a flat settings patch or ``{"category": ..., "data": {...}}``."""

    model_config = {"extra": "allow"}

    category: str | None = None
    data: dict[str, Any] | None = None

    def patch(self) -> dict[str, Any]:
        if self.category and self.data is not None:
            return {self.category: self.data}
        return dict(self.model_extra or {})


class SuspendRequest(BaseModel):
    reason: str | None = None


class TenantOut(BaseModel):
    tenant_id: str
    uuid: str | None = None
    name: str
    plan: str
    status: str
    mrr: float = 0.0
    subdomain: str | None = None
    region: str | None = None
    tenant_email: str | None = None
    owner_email: str | None = None
    owner_name: str | None = None
    billing_entity: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TenantCreateOut(BaseModel):
    success: bool
    data: TenantOut
    warnings: list[dict[str, str]] = Field(default_factory=list)


class TenantPage(BaseModel):
    data: list[TenantOut]
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class TenantStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_plan: dict[str, int]
    total_mrr: float


# ── Usage ────────────────────────────────────────────────────────

class UsageOut(BaseModel):
    id: str
    tenant_id: str
    metric: str
    period: str
    current: float
    limit: int
    percentage: int
    daily: dict[str, float] = Field(default_factory=dict)
    updated_at: datetime | None = None


class UsageOverview(BaseModel):
    tenant_id: str
    plan: str
    period: str
    metrics: list[UsageOut]


class UsageIncrement(BaseModel):
    amount: float = 1
    limit: int | None = Field(default=None, ge=0)
    period: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}$")


class UsageSet(BaseModel):
    value: float
    limit: int | None = Field(default=None, ge=0)
    period: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}$")


class OverLimitOut(BaseModel):
    tenant_id: str
    metric: str
    period: str
    over_limit: bool


# ── Feature flags ────────────────────────────────────────────────

class FlagCreate(BaseModel):
    key: str = Field(..., min_length=1, max_length=100, pattern=r"^[^:\s]+$")
    name: str = ""
    description: str = ""
    category: str | None = None
    scope: FlagScope = FlagScope.GLOBAL
    status: FlagStatus = FlagStatus.ENABLED
    enabled_for_plans: list[str] | None = None
    enabled_for_tenants: list[str] = Field(default_factory=list)
    disabled_for_tenants: list[str] = Field(default_factory=list)
    rollout_percentage: int = Field(default=100, ge=0, le=100)
    metadata: dict[str, Any] = Field(default_factory=dict)


class FlagUpdate(BaseModel):
    key: str | None = Field(default=None, min_length=1, max_length=100, pattern=r"^[^:\s]+$")
    name: str | None = None
    description: str | None = None
    category: str | None = None
    scope: FlagScope | None = None
    status: FlagStatus | None = None
    enabled_for_plans: list[str] | None = None
    enabled_for_tenants: list[str] | None = None
    disabled_for_tenants: list[str] | None = None
    rollout_percentage: int | None = Field(default=None, ge=0, le=100)
    metadata: dict[str, Any] | None = None


class FlagOut(BaseModel):
    id: str
    key: str
    name: str = ""
    description: str = ""
    category: str | None = None
    scope: str
    status: str
    enabled_for_plans: list[str] | None = None
    enabled_for_tenants: list[str] = Field(default_factory=list)
    disabled_for_tenants: list[str] = Field(default_factory=list)
    rollout_percentage: int = 100
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None


class TenantOverride(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    enabled: bool | None = None


class PlanEntitlement(BaseModel):
    plan: str = Field(..., min_length=1)
    enabled: bool


class TenantFeatureOut(BaseModel):
    id: str
    key: str
    name: str = ""
    description: str = ""
    category: str | None = None
    scope: str
    enabled: bool
    rule: str
    plan_locked: bool = False


class FlagCheckOut(BaseModel):
    key: str
    tenant_id: str
    enabled: bool


# ── Audit ────────────────────────────────────────────────────────

class AuditLogOut(BaseModel):
    entry_id: str
    action: str
    resource_type: str
    resource_id: str
    actor: str | None = None
    tenant_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    timestamp: datetime


# ── Generic ──────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"] = "ok"
    version: str = "0.1.0"
    environment: str = "dev"
    backends: dict[str, bool] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    detail: str
