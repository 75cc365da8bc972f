"""Tenant administration: create, update, suspend and delete across both stores.

The relational store is authoritative for the tenant row; the fast store
holds the ``tenant:<code>`` record the resolver reads first. There is no
transaction spanning the two: create records per-backend failures as
warnings, and mirror writes to the non-authoritative store are best-effort.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from uuid_extensions import uuid7

from src.core.clock import Clock, SystemClock
from src.core.constants import (
    COUNTER_FALLBACK_MODULO,
    COUNTER_MAX_SKIPS,
    DEFAULT_PAGE_SIZE,
    TENANT_COUNTER_KEY,
    TENANT_SCOPED_PREFIXES,
)
from src.core.effects import best_effort
from src.core.exceptions import BackendError, TenantNotFoundError
from src.core.interfaces import KeyPrefixStore
from src.core.logging import get_logger
from src.core.query import filter_tenants, paginate, sort_items
from src.core.types import Page, SortOrder, TenantFilters, TenantPlan, TenantStatus
from src.data.keys import (
    scoped_prefix,
    subscription_key,
    tenant_key,
    tenant_prefix,
    tenant_uuid_key,
)
from src.saas.audit import AuditAction, AuditLogger
from src.saas.resolver import TenantResolver
from src.saas.tenant import PLAN_PRICES, Tenant, format_external_code
from src.saas.usage import UsageLedger

log = get_logger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Identity fields no update may change
_IMMUTABLE_FIELDS = frozenset({"tenant_id", "id", "uuid", "external_id", "created_at"})

# Updatable attributes that live in the relational settings bag
_SETTINGS_FIELDS = (
    "plan",
    "subdomain",
    "region",
    "tenant_email",
    "owner_email",
    "owner_name",
    "billing_entity",
)

# Statuses that count towards recurring revenue
_BILLABLE = (TenantStatus.ACTIVE, TenantStatus.TRIAL)


class TenantWriter(Protocol):
    async def list_all(self) -> list[Tenant]: ...

    async def insert(self, tenant: Tenant) -> None: ...

    async def merge_settings(
        self, uuid: str, patch: dict[str, Any], *, updated_at: datetime | None = None
    ) -> Tenant | None: ...

    async def update_columns(
        self,
        uuid: str,
        *,
        name: str | None = None,
        status: TenantStatus | None = None,
        mrr: float | None = None,
        updated_at: datetime | None = None,
    ) -> None: ...

    async def delete(self, uuid: str) -> bool: ...


@dataclass
class TenantCreateResult:
    tenant: Tenant
    warnings: list[dict[str, str]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.warnings


def count_by_status(tenants: Sequence[Tenant]) -> dict[str, int]:
    return dict(Counter(t.status.value for t in tenants))


def count_by_plan(tenants: Sequence[Tenant]) -> dict[str, int]:
    return dict(Counter(t.plan.value for t in tenants))


def total_mrr(tenants: Sequence[Tenant]) -> float:
    """Recurring revenue of active and trial tenants."""
    return sum(t.mrr for t in tenants if t.status in _BILLABLE)


class TenantAdminService:
    def __init__(
        self,
        store: KeyPrefixStore,
        resolver: TenantResolver,
        ledger: UsageLedger,
        relational: TenantWriter | None = None,
        audit: AuditLogger | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._ledger = ledger
        self._relational = relational
        self._audit = audit
        self._clock = clock or SystemClock()

    async def get(self, identifier: str) -> Tenant:
        identity = await self._resolver.resolve(identifier)
        if identity.tenant is None:
            raise TenantNotFoundError(f"Tenant not found: {identifier}", {"identifier": identifier})
        return identity.tenant

    # ── Create ───────────────────────────────────────────────────

    async def next_counter(self) -> int:
        """Allocate the next external-code number.

        Read-then-write on ``system:tenant_counter``; concurrent creates may
        read the same value. Codes already present in the fast store are
        skipped. When the store is down the code falls back to the current
        epoch seconds modulo 10000.
        """
        try:
            current = await self._store.get(TENANT_COUNTER_KEY)
            counter = current if isinstance(current, int) and current > 0 else 1
            for _ in range(COUNTER_MAX_SKIPS):
                if await self._store.get(tenant_key(format_external_code(counter))) is None:
                    break
                counter += 1
            await self._store.set(TENANT_COUNTER_KEY, counter + 1)
        except BackendError as exc:
            counter = int(self._clock.now().timestamp()) % COUNTER_FALLBACK_MODULO
            log.warning("tenant_counter_fallback", counter=counter, error=str(exc))
        return counter

    async def create(
        self,
        name: str,
        subdomain: str,
        plan: TenantPlan | str,
        tenant_email: str,
        *,
        region: str | None = None,
        billing_entity: str | None = None,
        owner_name: str | None = None,
        owner_email: str | None = None,
        tenant_phone: str | None = None,
        actor: str | None = None,
    ) -> TenantCreateResult:
        if not name or not subdomain or not tenant_email:
            msg = "name, subdomain and tenant_email are required"
            raise ValueError(msg)
        if not _EMAIL_PATTERN.match(tenant_email):
            msg = f"invalid tenant email: {tenant_email}"
            raise ValueError(msg)
        if bool(owner_name) != bool(owner_email):
            msg = "owner_name and owner_email must be given together"
            raise ValueError(msg)

        plan = TenantPlan.parse(plan)
        code = format_external_code(await self.next_counter())
        uuid = str(uuid7())
        now = self._clock.now()
        settings = {
            "external_id": code,
            "plan": plan.value,
            "subdomain": subdomain,
            "region": region,
            "billing_entity": billing_entity or name,
            "tenant_email": tenant_email,
            "tenant_phone": tenant_phone,
            "owner_email": owner_email,
            "owner_name": owner_name,
        }
        tenant = Tenant(
            tenant_id=code,
            uuid=uuid,
            name=name,
            plan=plan,
            status=TenantStatus.TRIAL if plan is TenantPlan.TRIAL else TenantStatus.ACTIVE,
            mrr=PLAN_PRICES[plan],
            subdomain=subdomain,
            region=region,
            tenant_email=tenant_email,
            owner_email=owner_email,
            owner_name=owner_name,
            billing_entity=billing_entity or name,
            settings=settings,
            created_at=now,
            updated_at=now,
        )

        warnings: list[dict[str, str]] = []
        if self._relational is not None:
            try:
                await self._relational.insert(tenant)
            except BackendError as exc:
                warnings.append({"field": "relational.tenants", "message": str(exc)})

        try:
            await self._store.set(tenant_key(code), tenant.to_dict())
        except BackendError as exc:
            if self._relational is None or warnings:
                raise
            warnings.append({"field": "kv.tenant", "message": str(exc)})

        await self._log(AuditAction.TENANT_CREATED, tenant, actor, after=tenant.to_dict())
        log.info(
            "tenant_created",
            tenant_id=code,
            uuid=uuid,
            plan=plan.value,
            warnings=len(warnings),
        )
        return TenantCreateResult(tenant, warnings)

    # ── Update ───────────────────────────────────────────────────

    async def update(
        self, identifier: str, changes: Mapping[str, Any], actor: str | None = None
    ) -> Tenant:
        """Apply attribute changes. The external code and UUID never change."""
        tenant = await self.get(identifier)
        patch = {k: v for k, v in changes.items() if k not in _IMMUTABLE_FIELDS}
        before = tenant.to_dict()

        settings_patch = {k: patch[k] for k in _SETTINGS_FIELDS if k in patch}
        if isinstance(settings_patch.get("plan"), TenantPlan):
            settings_patch["plan"] = settings_patch["plan"].value
        updated = Tenant.from_dict(
            {
                **before,
                **patch,
                "tenant_id": tenant.tenant_id,
                "uuid": tenant.uuid,
                "settings": {**tenant.settings, **settings_patch},
                "created_at": tenant.created_at,
                "updated_at": self._clock.now(),
            }
        )
        if "plan" in patch and "mrr" not in patch:
            updated.mrr = PLAN_PRICES[updated.plan]

        await self._store.set(tenant_key(updated.tenant_id), updated.to_dict())
        if self._relational is not None and tenant.uuid:
            await best_effort(
                self._mirror_relational(self._relational, tenant.uuid, updated, settings_patch, patch),
                "tenant_update_relational_mirror",
                tenant_id=updated.tenant_id,
            )

        await self._log(
            AuditAction.TENANT_UPDATED, updated, actor, before=before, after=patch
        )
        log.info("tenant_updated", tenant_id=updated.tenant_id, fields=sorted(patch))
        return updated

    @staticmethod
    async def _mirror_relational(
        relational: TenantWriter,
        uuid: str,
        tenant: Tenant,
        settings_patch: dict[str, Any],
        patch: Mapping[str, Any],
    ) -> None:
        if settings_patch:
            await relational.merge_settings(uuid, settings_patch, updated_at=tenant.updated_at)
        await relational.update_columns(
            uuid,
            name=patch.get("name"),
            status=tenant.status if "status" in patch else None,
            mrr=tenant.mrr if "mrr" in patch or "plan" in patch else None,
            updated_at=tenant.updated_at,
        )

    async def update_settings(
        self, identifier: str, patch: Mapping[str, Any], actor: str | None = None
    ) -> Tenant:
        """Merge ``patch`` into the relational settings bag.

        The relational write is the primary effect and raises on failure; the
        fast-store record, when one exists, is refreshed best-effort.
        """
        tenant = await self.get(identifier)
        if self._relational is None or not tenant.uuid:
            raise TenantNotFoundError(
                f"Tenant has no relational record: {identifier}", {"identifier": identifier}
            )
        patch = {k: v for k, v in patch.items() if k != "external_id"}
        updated = await self._relational.merge_settings(
            tenant.uuid, patch, updated_at=self._clock.now()
        )
        if updated is None:
            raise TenantNotFoundError(f"Tenant not found: {identifier}", {"identifier": identifier})

        await best_effort(
            self._mirror_fast_store(updated),
            "tenant_settings_kv_mirror",
            tenant_id=updated.tenant_id,
        )
        await self._log(
            AuditAction.TENANT_SETTINGS_UPDATED,
            updated,
            actor,
            before=tenant.settings,
            after=dict(patch),
        )
        return updated

    async def _mirror_fast_store(self, tenant: Tenant) -> None:
        key = tenant_key(tenant.tenant_id)
        if await self._store.get(key) is not None:
            await self._store.set(key, tenant.to_dict())

    async def set_status(
        self,
        identifier: str,
        status: TenantStatus | str,
        reason: str | None = None,
        actor: str | None = None,
    ) -> Tenant:
        """Suspend, reactivate or otherwise move a tenant between statuses."""
        tenant = await self.get(identifier)
        status = TenantStatus(status)
        now = self._clock.now()
        before = tenant.to_dict()

        settings_patch: dict[str, Any] = {}
        if status is TenantStatus.SUSPENDED:
            settings_patch = {"suspended_at": now.isoformat(), "suspension_reason": reason}
            action = AuditAction.TENANT_SUSPENDED
        elif before["status"] == TenantStatus.SUSPENDED.value:
            # null rather than removal: the relational merge cannot drop keys
            settings_patch = {"unsuspended_at": now.isoformat(), "suspension_reason": None}
            action = AuditAction.TENANT_UNSUSPENDED
        else:
            action = AuditAction.TENANT_UPDATED
        tenant.status = status
        tenant.updated_at = now
        tenant.settings.update(settings_patch)

        await self._store.set(tenant_key(tenant.tenant_id), tenant.to_dict())
        if self._relational is not None and tenant.uuid:
            await best_effort(
                self._mirror_relational(
                    self._relational, tenant.uuid, tenant, settings_patch, {"status": status}
                ),
                "tenant_status_relational_mirror",
                tenant_id=tenant.tenant_id,
            )
        await self._log(
            action,
            tenant,
            actor,
            before={"status": before["status"]},
            after={"status": status.value, "reason": reason},
        )
        log.info("tenant_status_changed", tenant_id=tenant.tenant_id, status=status.value)
        return tenant

    # ── Delete ───────────────────────────────────────────────────

    async def delete(self, identifier: str, actor: str | None = None) -> Tenant:
        """Delete the tenant row, then purge everything it owns in the fast store."""
        tenant = await self.get(identifier)
        await self._log(AuditAction.TENANT_DELETED, tenant, actor, before=tenant.to_dict())

        if self._relational is not None and tenant.uuid:
            await self._relational.delete(tenant.uuid)

        await best_effort(
            self._purge_fast_store(tenant), "tenant_kv_purge", tenant_id=tenant.tenant_id
        )
        log.info("tenant_deleted", tenant_id=tenant.tenant_id, uuid=tenant.uuid)
        return tenant

    async def _purge_fast_store(self, tenant: Tenant) -> None:
        keys: list[str] = []
        for ident in tenant.identifiers:
            keys.append(tenant_key(ident))
            keys.append(subscription_key(ident))
            for collection in TENANT_SCOPED_PREFIXES:
                prefix = scoped_prefix(collection, ident)
                for doc in await self._store.get_by_prefix(prefix):
                    doc_id = doc.get("id") if isinstance(doc, dict) else None
                    if doc_id:
                        keys.append(doc_id if doc_id.startswith(prefix) else prefix + doc_id)
            await self._ledger.purge_tenant(ident)
        if tenant.uuid:
            keys.append(tenant_uuid_key(tenant.uuid))
        await self._store.mdel(keys)

    # ── Listing ──────────────────────────────────────────────────

    async def all_tenants(self) -> list[Tenant]:
        """Every tenant, from the relational store when configured."""
        if self._relational is not None:
            return await self._relational.list_all()
        docs = await self._store.get_by_prefix(tenant_prefix())
        return [Tenant.from_dict(d) for d in docs if isinstance(d, dict)]

    async def list(
        self,
        filters: TenantFilters | None = None,
        sort_by: str | None = None,
        order: SortOrder | str = SortOrder.DESC,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[Tenant]:
        tenants = filter_tenants(await self.all_tenants(), filters)
        return paginate(sort_items(tenants, sort_by, order), page, limit)

    async def count_by_status(self) -> dict[str, int]:
        return count_by_status(await self.all_tenants())

    async def count_by_plan(self) -> dict[str, int]:
        return count_by_plan(await self.all_tenants())

    async def total_mrr(self) -> float:
        return total_mrr(await self.all_tenants())

    async def stats(self) -> dict[str, Any]:
        tenants = await self.all_tenants()
        return {
            "total": len(tenants),
            "by_status": count_by_status(tenants),
            "by_plan": count_by_plan(tenants),
            "total_mrr": total_mrr(tenants),
        }

    async def _log(
        self,
        action: AuditAction,
        tenant: Tenant,
        actor: str | None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        if self._audit is None:
            return
        await self._audit.log(
            action,
            "tenant",
            tenant.uuid or tenant.tenant_id,
            actor=actor,
            tenant_id=tenant.uuid or tenant.tenant_id,
            before=before,
            after=after,
        )
