"""Feature flags — per-tenant overrides, plan entitlement and percentage rollout.

A flag is evaluated for one tenant by walking a fixed rule list; the first
rule that matches decides:

    missing / disabled  ->  off
    deny-list           ->  off
    allow-list          ->  on
    plan entitlement    ->  off when a plan is given and not entitled
    rollout < 100       ->  on iff rollout_bucket(tenant) < rollout
    status              ->  on iff status == enabled

Overrides beat the rollout so support staff can force a single tenant on or
off. The rollout bucket is a pure function of the identifier string.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from uuid_extensions import uuid7

from src.core.clock import Clock, SystemClock
from src.core.constants import ROLLOUT_BUCKETS
from src.core.exceptions import FlagConflictError, FlagNotFoundError, TenantNotFoundError
from src.core.interfaces import KeyPrefixStore
from src.core.logging import get_logger
from src.core.types import FlagScope, FlagStatus, TenantPlan
from src.data.keys import flag_key, flag_prefix
from src.saas.audit import AuditAction, AuditLogger
from src.saas.resolver import Identity

log = get_logger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "flag_id", "created_at", "created_by"})


def rollout_bucket(identifier: str) -> int:
    """Stable 0..99 bucket: sum of character code points modulo 100."""
    return sum(ord(ch) for ch in identifier) % ROLLOUT_BUCKETS


def _plan_name(plan: TenantPlan | str) -> str:
    return (plan.value if isinstance(plan, TenantPlan) else str(plan)).strip().lower()


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class FeatureFlag:
    flag_id: str
    key: str
    name: str = ""
    description: str = ""
    category: str | None = None
    scope: FlagScope = FlagScope.GLOBAL
    status: FlagStatus = FlagStatus.ENABLED
    # None: no plan restriction. An empty list entitles no plan.
    enabled_for_plans: list[str] | None = None
    enabled_for_tenants: list[str] = field(default_factory=list)
    disabled_for_tenants: list[str] = field(default_factory=list)
    rollout_percentage: int = 100
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None

    def __post_init__(self) -> None:
        if not self.key:
            msg = "feature flag key must not be empty"
            raise ValueError(msg)
        self.scope = FlagScope(self.scope)
        self.status = FlagStatus(self.status)
        self.rollout_percentage = int(self.rollout_percentage)
        if not 0 <= self.rollout_percentage <= 100:
            msg = f"rollout_percentage must be between 0 and 100, got {self.rollout_percentage}"
            raise ValueError(msg)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.flag_id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "scope": self.scope.value,
            "status": self.status.value,
            "enabled_for_plans": self.enabled_for_plans,
            "enabled_for_tenants": list(self.enabled_for_tenants),
            "disabled_for_tenants": list(self.disabled_for_tenants),
            "rollout_percentage": self.rollout_percentage,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FeatureFlag:
        plans = data.get("enabled_for_plans")
        rollout = data.get("rollout_percentage")
        return cls(
            flag_id=data.get("id") or data["flag_id"],
            key=data.get("key") or "",
            name=data.get("name") or "",
            description=data.get("description") or "",
            category=data.get("category"),
            scope=data.get("scope") or FlagScope.GLOBAL,
            status=data.get("status") or FlagStatus.ENABLED,
            enabled_for_plans=list(plans) if plans is not None else None,
            enabled_for_tenants=list(data.get("enabled_for_tenants") or []),
            disabled_for_tenants=list(data.get("disabled_for_tenants") or []),
            rollout_percentage=100 if rollout is None else rollout,
            metadata=dict(data.get("metadata") or {}),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
            created_by=data.get("created_by"),
        )


class FlagRule(str, Enum):
    """The rule that decided an evaluation."""

    MISSING = "missing"
    DISABLED = "disabled"
    DENY_LIST = "deny_list"
    ALLOW_LIST = "allow_list"
    PLAN = "plan"
    ROLLOUT = "rollout"
    STATUS = "status"


@dataclass(frozen=True)
class FlagDecision:
    enabled: bool
    rule: FlagRule
    flag_key: str | None = None


def evaluate_flag(
    flag: FeatureFlag | None,
    tenant_id: str,
    plan: TenantPlan | str | None = None,
    aliases: Iterable[str] = (),
) -> FlagDecision:
    """Decide whether ``flag`` is on for ``tenant_id``.

    ``aliases`` are the tenant's other identifiers (its UUID when the
    canonical id is the external code). They take part in the deny and allow
    lists only; the rollout bucket is always computed on ``tenant_id``.
    """
    if flag is None:
        return FlagDecision(False, FlagRule.MISSING)
    key = flag.key
    if flag.status is FlagStatus.DISABLED:
        return FlagDecision(False, FlagRule.DISABLED, key)

    ids = {tenant_id, *aliases}
    if ids.intersection(flag.disabled_for_tenants):
        return FlagDecision(False, FlagRule.DENY_LIST, key)
    if ids.intersection(flag.enabled_for_tenants):
        return FlagDecision(True, FlagRule.ALLOW_LIST, key)

    if plan is not None and flag.enabled_for_plans is not None:
        entitled = {_plan_name(p) for p in flag.enabled_for_plans}
        if _plan_name(plan) not in entitled:
            return FlagDecision(False, FlagRule.PLAN, key)

    if flag.rollout_percentage < 100:
        in_rollout = rollout_bucket(tenant_id) < flag.rollout_percentage
        return FlagDecision(in_rollout, FlagRule.ROLLOUT, key)

    return FlagDecision(flag.status is FlagStatus.ENABLED, FlagRule.STATUS, key)


class FeatureFlagService:
    """CRUD and evaluation of flags stored under ``flag:<flag_id>``."""

    def __init__(
        self,
        store: KeyPrefixStore,
        audit: AuditLogger | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock or SystemClock()

    # ── Reads ────────────────────────────────────────────────────

    async def list(self) -> list[FeatureFlag]:
        docs = await self._store.get_by_prefix(flag_prefix())
        return [FeatureFlag.from_dict(d) for d in docs]

    async def get(self, flag_id: str) -> FeatureFlag | None:
        doc = await self._store.get(flag_key(flag_id))
        return FeatureFlag.from_dict(doc) if doc else None

    async def find_by_key(self, key: str) -> FeatureFlag | None:
        for flag in await self.list():
            if flag.key == key:
                return flag
        return None

    async def _require_key(self, key: str) -> FeatureFlag:
        flag = await self.find_by_key(key)
        if flag is None:
            raise FlagNotFoundError(f"Feature flag not found: {key}", {"key": key})
        return flag

    # ── Mutations ────────────────────────────────────────────────

    async def create(self, data: Mapping[str, Any], actor: str | None = None) -> FeatureFlag:
        key = data.get("key")
        if key and await self.find_by_key(key) is not None:
            raise FlagConflictError(f"Feature flag already exists: {key}", {"key": key})

        now = self._clock.now()
        fields = {k: v for k, v in data.items() if k not in _IMMUTABLE_FIELDS}
        flag = FeatureFlag.from_dict(
            {
                **fields,
                "id": f"ff_{uuid7().hex}",
                "created_at": now,
                "updated_at": now,
                "created_by": actor,
            }
        )
        await self._store.set(flag_key(flag.flag_id), flag.to_dict())
        log.info("feature_flag_created", flag_id=flag.flag_id, key=flag.key)
        await self._log(AuditAction.FEATURE_FLAG_CREATED, flag, actor, after=flag.to_dict())
        return flag

    async def update(
        self, flag_id: str, changes: Mapping[str, Any], actor: str | None = None
    ) -> FeatureFlag:
        existing = await self.get(flag_id)
        if existing is None:
            raise FlagNotFoundError(f"Feature flag not found: {flag_id}", {"flag_id": flag_id})

        new_key = changes.get("key")
        if new_key and new_key != existing.key:
            other = await self.find_by_key(new_key)
            if other is not None:
                raise FlagConflictError(
                    f"Feature flag already exists: {new_key}", {"key": new_key}
                )

        patch = {k: v for k, v in changes.items() if k not in _IMMUTABLE_FIELDS}
        return await self._save(existing, patch, actor)

    async def delete(self, flag_id: str, actor: str | None = None) -> FeatureFlag:
        flag = await self.get(flag_id)
        if flag is None:
            raise FlagNotFoundError(f"Feature flag not found: {flag_id}", {"flag_id": flag_id})
        await self._store.delete(flag_key(flag_id))
        log.info("feature_flag_deleted", flag_id=flag_id, key=flag.key)
        await self._log(AuditAction.FEATURE_FLAG_DELETED, flag, actor, before=flag.to_dict())
        return flag

    async def set_tenant_override(
        self,
        key: str,
        tenant_id: str,
        enabled: bool | None,
        actor: str | None = None,
    ) -> FeatureFlag:
        """Force a tenant on (allow-list), off (deny-list), or clear with ``None``."""
        flag = await self._require_key(key)
        allow = [t for t in flag.enabled_for_tenants if t != tenant_id]
        deny = [t for t in flag.disabled_for_tenants if t != tenant_id]
        if enabled is True:
            allow.append(tenant_id)
        elif enabled is False:
            deny.append(tenant_id)
        return await self._save(
            flag, {"enabled_for_tenants": allow, "disabled_for_tenants": deny}, actor
        )

    async def set_plan_entitlement(
        self,
        key: str,
        plan: TenantPlan | str,
        enabled: bool,
        actor: str | None = None,
    ) -> FeatureFlag:
        flag = await self._require_key(key)
        name = plan.value if isinstance(plan, TenantPlan) else str(plan)
        plans = [p for p in flag.enabled_for_plans or [] if _plan_name(p) != _plan_name(name)]
        if enabled:
            plans.append(name)
        return await self._save(flag, {"enabled_for_plans": plans}, actor)

    async def _save(
        self, existing: FeatureFlag, patch: Mapping[str, Any], actor: str | None
    ) -> FeatureFlag:
        before = existing.to_dict()
        updated = FeatureFlag.from_dict(
            {**before, **patch, "updated_at": self._clock.now()}
        )
        await self._store.set(flag_key(updated.flag_id), updated.to_dict())
        log.info("feature_flag_updated", flag_id=updated.flag_id, fields=sorted(patch))
        await self._log(
            AuditAction.FEATURE_FLAG_UPDATED, updated, actor, before=before, after=updated.to_dict()
        )
        return updated

    async def _log(
        self,
        action: AuditAction,
        flag: FeatureFlag,
        actor: str | None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        if self._audit is None:
            return
        await self._audit.log(
            action, "feature_flag", flag.flag_id, actor=actor, before=before, after=after
        )

    # ── Evaluation ───────────────────────────────────────────────

    async def is_enabled(
        self,
        key: str,
        tenant_id: str,
        plan: TenantPlan | str | None = None,
        aliases: Iterable[str] = (),
    ) -> bool:
        flag = await self.find_by_key(key)
        decision = evaluate_flag(flag, tenant_id, plan, aliases)
        log.debug(
            "feature_flag_evaluated",
            key=key,
            tenant_id=tenant_id,
            enabled=decision.enabled,
            rule=decision.rule.value,
        )
        return decision.enabled

    async def features_for(
        self, identity: Identity
    ) -> list[tuple[FeatureFlag, FlagDecision]]:
        """Evaluate every flag for a resolved tenant, under its plan."""
        tenant = identity.tenant
        if tenant is None:
            raise TenantNotFoundError(
                f"Tenant not found: {identity.identifier}", {"identifier": identity.identifier}
            )
        aliases = [i for i in tenant.identifiers if i != tenant.tenant_id]
        return [
            (flag, evaluate_flag(flag, tenant.tenant_id, tenant.plan, aliases))
            for flag in await self.list()
        ]
