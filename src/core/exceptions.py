"""Custom exception hierarchy for the admin core."""

from __future__ import annotations

from typing import Any


class HMSBaseError(Exception):
    """Base exception for all admin core errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context or {}


# ── Backends ─────────────────────────────────────────────────────

class BackendError(HMSBaseError):
    """A storage backend could not answer the call."""


class StoreUnavailableError(BackendError):
    """Key-value store call failed (connection, timeout, decode)."""


class RelationalQueryError(BackendError):
    """Relational store query failed."""


# ── Tenants ──────────────────────────────────────────────────────

class TenantNotFoundError(HMSBaseError):
    """Admin mutation targeted a tenant that does not resolve."""


# ── Feature flags ────────────────────────────────────────────────

class FlagNotFoundError(HMSBaseError):
    """No feature flag with the given id or key."""


class FlagConflictError(HMSBaseError):
    """A feature flag with the same key already exists."""
