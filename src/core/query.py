"""List helpers shared by every list endpoint: pagination, sorting, filtering."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, TypeVar

from src.core.constants import DEFAULT_PAGE_SIZE
from src.core.types import Page, SortOrder, TenantFilters

T = TypeVar("T")


def paginate(items: Sequence[T], page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page[T]:
    """Slice ``items`` into a 1-indexed page."""
    page = max(1, page or 1)
    limit = max(1, limit or DEFAULT_PAGE_SIZE)
    total = len(items)
    total_pages = math.ceil(total / limit)
    start = (page - 1) * limit

    return Page(
        data=list(items[start:start + limit]),
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


def _field_value(item: Any, field: str) -> Any:
    if isinstance(item, dict):
        return item.get(field)
    return getattr(item, field, None)


def sort_items(
    items: Sequence[T],
    field: str | None,
    order: SortOrder | str = SortOrder.ASC,
) -> list[T]:
    """Stable sort by ``field``. Items missing the field sort last in either order."""
    if not field:
        return list(items)

    descending = SortOrder(order) == SortOrder.DESC
    present = [i for i in items if _field_value(i, field) is not None]
    missing = [i for i in items if _field_value(i, field) is None]
    present.sort(key=lambda i: _sort_key(_field_value(i, field)), reverse=descending)
    return present + missing


def _sort_key(value: Any) -> Any:
    # Enums sort by their value so "Basic" < "Pro" regardless of member order
    return getattr(value, "value", value)


def filter_tenants(tenants: Sequence[T], filters: TenantFilters | None) -> list[T]:
    """Apply status/plan/region/search/date filters to tenant-like items."""
    if filters is None:
        return list(tenants)

    result: list[T] = []
    for tenant in tenants:
        if filters.status and _text(tenant, "status") != filters.status:
            continue
        if filters.plan and _text(tenant, "plan") != filters.plan:
            continue
        if filters.region and _text(tenant, "region") != filters.region:
            continue
        if filters.search:
            haystack = " ".join(
                _text(tenant, f)
                for f in ("name", "subdomain", "owner_email", "owner_name", "tenant_id")
            ).lower()
            if filters.search.lower() not in haystack:
                continue
        created = _created(tenant)
        if filters.date_from and (not created or created < filters.date_from):
            continue
        if filters.date_to and (not created or created > filters.date_to):
            continue
        result.append(tenant)
    return result


def _text(item: Any, field: str) -> str:
    value = _field_value(item, field)
    if value is None:
        return ""
    return str(getattr(value, "value", value))


def _created(item: Any) -> str:
    value = _field_value(item, "created_at")
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
