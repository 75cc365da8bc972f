"""Tenant identity model — one record, three identifiers.

A tenant can be addressed by:
- its external code (``T-<n>``), which is also its fast-store key
- its relational-store UUID
- for records that predate external codes, the UUID doubles as the code
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.core.constants import (
    EXTERNAL_CODE_PREFIX,
    METRIC_API_CALLS,
    METRIC_PROPERTIES,
    METRIC_ROOMS,
    METRIC_STORAGE,
    METRIC_USERS,
)
from src.core.types import TenantPlan, TenantStatus

PLAN_LIMITS: dict[TenantPlan, dict[str, int]] = {
    TenantPlan.TRIAL: {
        METRIC_ROOMS: 10,
        METRIC_USERS: 3,
        METRIC_PROPERTIES: 1,
        METRIC_API_CALLS: 1_000,
        METRIC_STORAGE: 1,
    },
    TenantPlan.BASIC: {
        METRIC_ROOMS: 25,
        METRIC_USERS: 5,
        METRIC_PROPERTIES: 1,
        METRIC_API_CALLS: 10_000,
        METRIC_STORAGE: 10,
    },
    TenantPlan.PRO: {
        METRIC_ROOMS: 35,
        METRIC_USERS: 10,
        METRIC_PROPERTIES: 2,
        METRIC_API_CALLS: 100_000,
        METRIC_STORAGE: 50,
    },
    TenantPlan.ENTERPRISE: {
        METRIC_ROOMS: 50,
        METRIC_USERS: 15,
        METRIC_PROPERTIES: 3,
        METRIC_API_CALLS: 999_999,
        METRIC_STORAGE: 500,
    },
}

# Monthly recurring revenue by plan
PLAN_PRICES: dict[TenantPlan, float] = {
    TenantPlan.TRIAL: 0.0,
    TenantPlan.BASIC: 99.0,
    TenantPlan.PRO: 299.0,
    TenantPlan.ENTERPRISE: 999.0,
}

# Flat attribute -> settings keys it may be stored under (snake_case first)
_LIFTED_SETTINGS: dict[str, tuple[str, ...]] = {
    "subdomain": ("subdomain",),
    "region": ("region",),
    "tenant_email": ("tenant_email", "tenantEmail"),
    "owner_email": ("owner_email", "owner"),
    "owner_name": ("owner_name", "ownerName"),
    "billing_entity": ("billing_entity", "billingEntity"),
}


def format_external_code(counter: int) -> str:
    return f"{EXTERNAL_CODE_PREFIX}{counter}"


def parse_status(value: object) -> TenantStatus:
    try:
        return TenantStatus(str(value).lower())
    except ValueError:
        return TenantStatus.PENDING


@dataclass
class Tenant:
    """Normalised tenant record, identical whichever backend produced it."""

    tenant_id: str
    name: str
    plan: TenantPlan = TenantPlan.TRIAL
    status: TenantStatus = TenantStatus.TRIAL
    uuid: str | None = None
    mrr: float = 0.0
    subdomain: str | None = None
    region: str | None = None
    tenant_email: str | None = None
    owner_email: str | None = None
    owner_name: str | None = None
    billing_entity: str | None = None
    settings: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def identifiers(self) -> list[str]:
        """Every identifier this tenant may be referenced by."""
        ids = [self.tenant_id]
        if self.uuid and self.uuid != self.tenant_id:
            ids.append(self.uuid)
        return ids

    @property
    def limits(self) -> dict[str, int]:
        return PLAN_LIMITS[self.plan]

    def to_dict(self) -> dict[str, Any]:
        """Fast-store document form."""
        return {
            "tenant_id": self.tenant_id,
            "uuid": self.uuid,
            "name": self.name,
            "plan": self.plan.value,
            "status": self.status.value,
            "mrr": self.mrr,
            "subdomain": self.subdomain,
            "region": self.region,
            "tenant_email": self.tenant_email,
            "owner_email": self.owner_email,
            "owner_name": self.owner_name,
            "billing_entity": self.billing_entity,
            "settings": self.settings,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Tenant:
        return cls(
            tenant_id=str(data.get("tenant_id") or data.get("id")),
            uuid=data.get("uuid"),
            name=data.get("name", ""),
            plan=TenantPlan.parse(data.get("plan")),
            status=parse_status(data.get("status")),
            mrr=float(data.get("mrr") or 0.0),
            subdomain=data.get("subdomain"),
            region=data.get("region"),
            tenant_email=data.get("tenant_email"),
            owner_email=data.get("owner_email"),
            owner_name=data.get("owner_name"),
            billing_entity=data.get("billing_entity"),
            settings=dict(data.get("settings") or {}),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


def tenant_from_row(row: Mapping[str, Any]) -> Tenant:
    """Translate a relational ``tenants`` row into the normalised shape.

    Nested settings fields are lifted to flat attributes; the external code
    stored in ``settings.external_id`` becomes ``tenant_id`` and the row UUID
    becomes ``uuid``.
    """
    settings = row.get("settings") or {}
    if isinstance(settings, str):
        settings = json.loads(settings)

    uuid = str(row["id"])
    plan = TenantPlan.parse(settings.get("plan"))
    mrr = row.get("mrr")

    lifted: dict[str, Any] = {}
    for attr, keys in _LIFTED_SETTINGS.items():
        lifted[attr] = next((settings[k] for k in keys if settings.get(k)), None)

    return Tenant(
        tenant_id=settings.get("external_id") or uuid,
        uuid=uuid,
        name=row.get("name") or "",
        plan=plan,
        status=parse_status(row.get("status")),
        mrr=float(mrr) if mrr is not None else PLAN_PRICES[plan],
        settings=dict(settings),
        created_at=_parse_dt(row.get("created_at")),
        updated_at=_parse_dt(row.get("updated_at")),
        **lifted,
    )


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None
