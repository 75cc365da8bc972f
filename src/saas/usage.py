"""Usage ledger — per-tenant, per-metric, per-period counters with plan limits.

Tracks one record per ``(tenant, metric, period)`` under
``usage:<tenant>:<period>:<metric>``. The period defaults to the current
calendar month of the injected clock, so the first write of a new month
starts a fresh record.

Limits are sticky: the limit captured on a record's first write is kept by
``increment`` even if the tenant's plan changes later. Only ``reconcile``
(the tenant usage overview) re-derives limits from the current plan.

``increment`` reads the current total and writes the new one. It is not an
atomic add; two concurrent increments of the same record can lose one update.
Callers rely on a single writer per tenant request.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from src.core.clock import Clock, SystemClock, day_of, period_of
from src.core.constants import DEFAULT_METRICS, DEFAULT_USAGE_LIMIT, METRIC_UNITS
from src.core.interfaces import KeyPrefixStore
from src.core.logging import get_logger
from src.core.types import TenantPlan
from src.data.keys import usage_key, usage_prefix
from src.saas.plans import PlanCatalog
from src.saas.resolver import TenantResolver

log = get_logger(__name__)


def usage_percentage(current: float, limit: float) -> int:
    """``min(100, round(current / limit * 100))`` with halves rounded up."""
    if limit <= 0:
        return 100 if current > 0 else 0
    return min(100, math.floor(current * 100 / limit + 0.5))


@dataclass
class UsageRecord:
    """Accumulated usage of one metric in one billing period."""

    tenant_id: str
    metric: str
    period: str  # "YYYY-MM"
    current: float = 0
    limit: int = DEFAULT_USAGE_LIMIT
    daily: dict[str, float] = field(default_factory=dict)  # "YYYY-MM-DD" -> value
    updated_at: datetime | None = None

    @property
    def key(self) -> str:
        return usage_key(self.tenant_id, self.period, self.metric)

    @property
    def percentage(self) -> int:
        return usage_percentage(self.current, self.limit)

    @property
    def over_limit(self) -> bool:
        return self.current >= self.limit

    @property
    def unit(self) -> str:
        return METRIC_UNITS.get(self.metric, "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.key,
            "tenant_id": self.tenant_id,
            "metric": self.metric,
            "period": self.period,
            "current": self.current,
            "limit": self.limit,
            "percentage": self.percentage,
            "daily": self.daily,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UsageRecord:
        updated = data.get("updated_at")
        limit = data.get("limit")
        return cls(
            tenant_id=data["tenant_id"],
            metric=data["metric"],
            period=data["period"],
            current=data.get("current") or 0,
            limit=DEFAULT_USAGE_LIMIT if limit is None else limit,
            daily=dict(data.get("daily") or {}),
            updated_at=datetime.fromisoformat(updated) if updated else None,
        )


class UsageLedger:
    """Reads and writes usage records in the fast store."""

    def __init__(
        self,
        store: KeyPrefixStore,
        plans: PlanCatalog,
        resolver: TenantResolver | None = None,
        clock: Clock | None = None,
        default_limit: int = DEFAULT_USAGE_LIMIT,
    ) -> None:
        self._store = store
        self._plans = plans
        self._resolver = resolver
        self._clock = clock or SystemClock()
        self._default_limit = default_limit

    def current_period(self) -> str:
        return period_of(self._clock.now())

    # ── Reads ────────────────────────────────────────────────────

    async def get(
        self, tenant_id: str, metric: str, period: str | None = None
    ) -> UsageRecord | None:
        p = period or self.current_period()
        doc = await self._store.get(usage_key(tenant_id, p, metric))
        return UsageRecord.from_dict(doc) if doc else None

    async def list_period(self, tenant_id: str, period: str | None = None) -> list[UsageRecord]:
        p = period or self.current_period()
        docs = await self._store.get_by_prefix(usage_prefix(tenant_id, p))
        return [UsageRecord.from_dict(d) for d in docs]

    async def list_all(self, tenant_id: str | None = None) -> list[UsageRecord]:
        """Every record of one tenant (all periods), or of every tenant."""
        docs = await self._store.get_by_prefix(usage_prefix(tenant_id))
        return [UsageRecord.from_dict(d) for d in docs]

    async def is_over_limit(
        self, tenant_id: str, metric: str, period: str | None = None
    ) -> bool:
        record = await self.get(tenant_id, metric, period)
        return record.over_limit if record else False

    # ── Writes ───────────────────────────────────────────────────

    async def record(
        self,
        tenant_id: str,
        metric: str,
        value: float,
        limit: int | None = None,
        period: str | None = None,
    ) -> UsageRecord:
        """Set the period total of ``metric`` to ``value``.

        The limit is ``limit`` when given, else the existing record's limit,
        else derived from the tenant's plan.
        """
        p = period or self.current_period()
        existing = await self.get(tenant_id, metric, p)
        return await self._write(tenant_id, metric, value, limit, p, existing)

    async def increment(
        self,
        tenant_id: str,
        metric: str,
        amount: float = 1,
        limit: int | None = None,
        period: str | None = None,
    ) -> UsageRecord:
        """Add ``amount`` to the period total (read, then write; not atomic).

        ``limit`` only applies when this call creates the record.
        """
        p = period or self.current_period()
        existing = await self.get(tenant_id, metric, p)
        current = existing.current if existing else 0
        sticky_limit = existing.limit if existing else limit
        return await self._write(tenant_id, metric, current + amount, sticky_limit, p, existing)

    async def _write(
        self,
        tenant_id: str,
        metric: str,
        value: float,
        limit: int | None,
        period: str,
        existing: UsageRecord | None,
    ) -> UsageRecord:
        if limit is None:
            limit = existing.limit if existing else await self.derive_limit(tenant_id, metric)

        now = self._clock.now()
        daily = dict(existing.daily) if existing else {}
        daily[day_of(now)] = value

        record = UsageRecord(
            tenant_id=tenant_id,
            metric=metric,
            period=period,
            current=value,
            limit=limit,
            daily=daily,
            updated_at=now,
        )
        await self._store.set(record.key, record.to_dict())
        log.debug(
            "usage_recorded",
            tenant_id=tenant_id,
            metric=metric,
            period=period,
            current=value,
            limit=limit,
        )
        return record

    async def reset(self, tenant_id: str, period: str | None = None) -> list[UsageRecord]:
        """Zero every metric of the period, keeping limits and daily history."""
        now = self._clock.now()
        records = [
            replace(r, current=0, updated_at=now)
            for r in await self.list_period(tenant_id, period)
        ]
        await self._store.mset({r.key: r.to_dict() for r in records})
        log.info("usage_reset", tenant_id=tenant_id, period=period, metrics=len(records))
        return records

    async def delete(self, tenant_id: str, period: str | None = None) -> int:
        """Remove the period's records. Returns how many were removed."""
        keys = [r.key for r in await self.list_period(tenant_id, period)]
        await self._store.mdel(keys)
        log.info("usage_deleted", tenant_id=tenant_id, period=period, count=len(keys))
        return len(keys)

    async def purge_tenant(self, tenant_id: str) -> int:
        """Remove every period of the tenant."""
        keys = [r.key for r in await self.list_all(tenant_id)]
        await self._store.mdel(keys)
        return len(keys)

    # ── Limits ───────────────────────────────────────────────────

    async def derive_limit(self, tenant_id: str, metric: str) -> int:
        """Limit of ``metric`` under the tenant's current plan."""
        if self._resolver is None:
            return self._default_limit
        identity = await self._resolver.resolve(tenant_id)
        if identity.tenant is None:
            return self._default_limit
        limits = await self._plans.limits_for(identity.tenant.plan)
        return limits.get(metric, self._default_limit)

    async def reconcile(
        self,
        tenant_id: str,
        plan: TenantPlan | str,
        period: str | None = None,
        metrics: Iterable[str] = DEFAULT_METRICS,
    ) -> list[UsageRecord]:
        """Bring the period's limits in line with ``plan``.

        Existing records whose limit drifted from the plan are rewritten;
        missing metrics are created with a zero total. Returns the period's
        records, existing first.
        """
        p = period or self.current_period()
        limits = await self._plans.limits_for(plan)
        now = self._clock.now()

        records = await self.list_period(tenant_id, p)
        changed: dict[str, UsageRecord] = {}
        result: list[UsageRecord] = []

        for record in records:
            correct = limits.get(record.metric) or record.limit
            if correct != record.limit:
                log.info(
                    "usage_limit_reconciled",
                    tenant_id=tenant_id,
                    metric=record.metric,
                    period=p,
                    old=record.limit,
                    new=correct,
                )
                record = replace(record, limit=correct, updated_at=now)
                changed[record.key] = record
            result.append(record)

        present = {r.metric for r in records}
        for metric in metrics:
            if metric in present:
                continue
            created = UsageRecord(
                tenant_id=tenant_id,
                metric=metric,
                period=p,
                current=0,
                limit=limits.get(metric, self._default_limit),
                updated_at=now,
            )
            changed[created.key] = created
            result.append(created)

        await self._store.mset({k: r.to_dict() for k, r in changed.items()})
        return result
