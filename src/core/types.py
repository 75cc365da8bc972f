"""System-wide shared enums and small value types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


# ── Enums ────────────────────────────────────────────────────────

class TenantPlan(str, Enum):
    TRIAL = "Trial"
    BASIC = "Basic"
    PRO = "Pro"
    ENTERPRISE = "Enterprise"

    @classmethod
    def parse(cls, value: object) -> "TenantPlan":
        """Map a stored plan name to the enum; unknown names fall back to Trial."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for plan in cls:
            if plan.value.lower() == text:
                return plan
        return cls.TRIAL


class TenantStatus(str, Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    PENDING = "pending"


class FlagScope(str, Enum):
    GLOBAL = "global"
    PLAN = "plan"
    TENANT = "tenant"


class FlagStatus(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    BETA = "beta"


class ResolutionSource(str, Enum):
    UNRESOLVED = "unresolved"
    FAST_STORE = "kv"
    RELATIONAL = "postgres"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ── Query results ────────────────────────────────────────────────

@dataclass
class Page(Generic[T]):
    """One page of a list endpoint result."""

    data: list[T]
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool = False
    has_prev: bool = False


@dataclass
class TenantFilters:
    """Optional list filters accepted by tenant listings."""

    status: str | None = None
    plan: str | None = None
    region: str | None = None
    search: str | None = None
    date_from: str | None = None  # ISO timestamp
    date_to: str | None = None
