"""System-wide constants. All magic numbers and strings live here."""

from __future__ import annotations

import re

# ── Identifiers ──────────────────────────────────────────────────
EXTERNAL_CODE_PREFIX = "T-"
UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# ── Fast-store keys ──────────────────────────────────────────────
KEY_SEPARATOR = ":"
PREFIX_TENANT = "tenant"
PREFIX_TENANT_UUID = "tenant_uuid"
PREFIX_USAGE = "usage"
PREFIX_FLAG = "flag"
PREFIX_SUBSCRIPTION = "subscription"
TENANT_COUNTER_KEY = "system:tenant_counter"

# Tenant-scoped collections purged together with the tenant record
TENANT_SCOPED_PREFIXES: tuple[str, ...] = ("integration", "compliance", "notification")

# ── Usage ────────────────────────────────────────────────────────
METRIC_ROOMS = "rooms"
METRIC_USERS = "users"
METRIC_PROPERTIES = "properties"
METRIC_API_CALLS = "api_calls"
METRIC_STORAGE = "storage"

DEFAULT_METRICS: tuple[str, ...] = (
    METRIC_ROOMS,
    METRIC_USERS,
    METRIC_PROPERTIES,
    METRIC_API_CALLS,
    METRIC_STORAGE,
)

METRIC_UNITS: dict[str, str] = {
    METRIC_STORAGE: "GB",
    METRIC_API_CALLS: "/month",
}

DEFAULT_USAGE_LIMIT = 1000
PERIOD_FORMAT = "%Y-%m"
DAY_FORMAT = "%Y-%m-%d"

# ── Feature flags ────────────────────────────────────────────────
ROLLOUT_BUCKETS = 100

# ── Tenant counter fallback (seconds since epoch modulo) ─────────
COUNTER_FALLBACK_MODULO = 10_000
COUNTER_MAX_SKIPS = 50

# ── Query helpers ────────────────────────────────────────────────
DEFAULT_PAGE_SIZE = 50
