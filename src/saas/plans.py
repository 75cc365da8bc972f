"""Plan limit tables: declared in the relational store, hard-coded fallback."""

from __future__ import annotations

import re
from typing import Protocol

from src.core.exceptions import BackendError
from src.core.logging import get_logger
from src.core.types import TenantPlan
from src.saas.tenant import PLAN_LIMITS

log = get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def metric_name(key: str) -> str:
    """Normalise declared limit keys (``apiCalls``) to metric names (``api_calls``)."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


class PlanLimitSource(Protocol):
    async def find_limits(self, plan_name: str) -> dict[str, int] | None: ...


class PlanCatalog:
    """Resolves the limit table of a plan.

    A declared table wins; otherwise the plan's default profile is used.
    Lookup failures fall back to the default profile.
    """

    def __init__(self, source: PlanLimitSource | None = None) -> None:
        self._source = source

    async def limits_for(self, plan: TenantPlan | str) -> dict[str, int]:
        plan = TenantPlan.parse(plan)
        if self._source is not None:
            try:
                declared = await self._source.find_limits(plan.value)
            except BackendError as exc:
                log.warning("plan_limits_lookup_failed", plan=plan.value, error=str(exc))
                declared = None
            if declared:
                return {
                    metric_name(k): int(v) for k, v in declared.items() if v is not None
                }
        return dict(PLAN_LIMITS[plan])
