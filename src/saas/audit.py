"""Audit trail for administrative mutations.

Entries are immutable and append-only. Writing one is a secondary effect:
a failed insert is logged and never fails the mutation that triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from uuid_extensions import uuid7

from src.core.clock import Clock, SystemClock
from src.core.effects import best_effort
from src.core.logging import get_logger

log = get_logger(__name__)


class AuditAction(str, Enum):
    TENANT_CREATED = "tenant.created"
    TENANT_UPDATED = "tenant.updated"
    TENANT_SETTINGS_UPDATED = "tenant.settings_updated"
    TENANT_SUSPENDED = "tenant.suspended"
    TENANT_UNSUSPENDED = "tenant.unsuspended"
    TENANT_DELETED = "tenant.deleted"
    USAGE_RESET = "usage.reset"
    USAGE_DELETED = "usage.deleted"
    FEATURE_FLAG_CREATED = "feature_flag.created"
    FEATURE_FLAG_UPDATED = "feature_flag.updated"
    FEATURE_FLAG_DELETED = "feature_flag.deleted"


@dataclass(frozen=True)
class AuditLogEntry:
    """Single immutable audit record."""

    action: str
    resource_type: str
    resource_id: str
    timestamp: datetime
    actor: str | None = None
    tenant_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    entry_id: str = field(default_factory=lambda: str(uuid7()))


class AuditSink(Protocol):
    async def insert(self, entry: AuditLogEntry) -> None: ...


class AuditLogger:
    """Builds audit entries and writes them best-effort."""

    def __init__(self, sink: AuditSink | None, clock: Clock | None = None) -> None:
        self._sink = sink
        self._clock = clock or SystemClock()

    async def log(
        self,
        action: AuditAction | str,
        resource_type: str,
        resource_id: str,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            action=action.value if isinstance(action, AuditAction) else action,
            resource_type=resource_type,
            resource_id=resource_id,
            timestamp=self._clock.now(),
            actor=actor,
            tenant_id=tenant_id,
            before=before,
            after=after,
        )
        if self._sink is not None:
            await best_effort(
                self._sink.insert(entry),
                "audit_log_insert",
                action=entry.action,
                resource_id=resource_id,
            )
        log.info(
            "audit_logged",
            action=entry.action,
            resource_type=resource_type,
            resource_id=resource_id,
        )
        return entry
