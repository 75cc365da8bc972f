"""Fast-store key layout.

Keys are colon-delimited. Prefix scans rely on every prefix ending with the
separator, so ``usage:T-1:`` never matches records of ``T-10``.
"""

from __future__ import annotations

from src.core.constants import (
    KEY_SEPARATOR,
    PREFIX_FLAG,
    PREFIX_SUBSCRIPTION,
    PREFIX_TENANT,
    PREFIX_TENANT_UUID,
    PREFIX_USAGE,
)


def _segment(value: str, name: str) -> str:
    if not value:
        msg = f"{name} must not be empty"
        raise ValueError(msg)
    if KEY_SEPARATOR in value:
        msg = f"{name} must not contain '{KEY_SEPARATOR}': {value!r}"
        raise ValueError(msg)
    return value


def join(*parts: str) -> str:
    return KEY_SEPARATOR.join(parts)


def tenant_key(identifier: str) -> str:
    return join(PREFIX_TENANT, identifier)


def tenant_prefix() -> str:
    return PREFIX_TENANT + KEY_SEPARATOR


def tenant_uuid_key(uuid: str) -> str:
    return join(PREFIX_TENANT_UUID, uuid)


def subscription_key(tenant_id: str) -> str:
    return join(PREFIX_SUBSCRIPTION, tenant_id)


def usage_key(tenant_id: str, period: str, metric: str) -> str:
    return join(
        PREFIX_USAGE,
        _segment(tenant_id, "tenant_id"),
        _segment(period, "period"),
        _segment(metric, "metric"),
    )


def usage_prefix(tenant_id: str | None = None, period: str | None = None) -> str:
    """Prefix for all usage, one tenant's usage, or one tenant-period."""
    parts = [PREFIX_USAGE]
    if tenant_id is not None:
        parts.append(_segment(tenant_id, "tenant_id"))
        if period is not None:
            parts.append(_segment(period, "period"))
    return join(*parts) + KEY_SEPARATOR


def flag_key(flag_id: str) -> str:
    return join(PREFIX_FLAG, _segment(flag_id, "flag_id"))


def flag_prefix() -> str:
    return PREFIX_FLAG + KEY_SEPARATOR


def scoped_prefix(collection: str, tenant_id: str) -> str:
    """Prefix of a tenant-scoped collection, e.g. ``integration:T-1:``."""
    return join(collection, _segment(tenant_id, "tenant_id")) + KEY_SEPARATOR
