"""Tenant identity resolution across the fast store and the relational store.

Resolution order, first hit wins:

1. fast store, identifier used as the ``tenant:<identifier>`` key
2. relational store by primary key, only when the identifier is UUID-shaped
3. relational store by ``settings->>'external_id'``

Relational hits are translated into the same normalised ``Tenant`` the fast
store holds, so callers never learn which backend answered. A backend that
fails is treated as "no match from this source" and the chain continues.
Misses are not cached: every unresolved lookup repeats the whole chain.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from src.core.constants import UUID_PATTERN
from src.core.exceptions import BackendError
from src.core.interfaces import KeyPrefixStore
from src.core.logging import get_logger
from src.core.types import ResolutionSource
from src.data.keys import tenant_key
from src.saas.tenant import Tenant

log = get_logger(__name__)


class TenantLookup(Protocol):
    async def find_by_uuid(self, uuid: str) -> Tenant | None: ...

    async def find_by_external_id(self, code: str) -> Tenant | None: ...


@dataclass(frozen=True)
class Identity:
    """Outcome of resolving one identifier."""

    identifier: str
    source: ResolutionSource = ResolutionSource.UNRESOLVED
    tenant: Tenant | None = None

    @property
    def found(self) -> bool:
        return self.tenant is not None

    @property
    def tenant_id(self) -> str | None:
        """Canonical fast-store identifier of the resolved tenant."""
        return self.tenant.tenant_id if self.tenant else None

    @property
    def identifiers(self) -> list[str]:
        return self.tenant.identifiers if self.tenant else []


def is_uuid(identifier: str) -> bool:
    return bool(UUID_PATTERN.match(identifier))


class TenantResolver:
    """Maps any tenant identifier to its canonical record."""

    def __init__(self, store: KeyPrefixStore, relational: TenantLookup | None) -> None:
        self._store = store
        self._relational = relational

    async def resolve(self, identifier: str) -> Identity:
        identifier = (identifier or "").strip()
        if not identifier:
            return Identity(identifier=identifier)

        tenant = await self._from_fast_store(identifier)
        if tenant is not None:
            log.debug("tenant_resolved", identifier=identifier, source="kv")
            return Identity(identifier, ResolutionSource.FAST_STORE, tenant)

        if self._relational is not None:
            if is_uuid(identifier):
                tenant = await self._from_relational(
                    "find_by_uuid", self._relational.find_by_uuid, identifier
                )
            if tenant is None:
                tenant = await self._from_relational(
                    "find_by_external_id", self._relational.find_by_external_id, identifier
                )
            if tenant is not None:
                log.debug("tenant_resolved", identifier=identifier, source="postgres")
                return Identity(identifier, ResolutionSource.RELATIONAL, tenant)

        log.info("tenant_resolve_miss", identifier=identifier)
        return Identity(identifier=identifier)

    async def _from_fast_store(self, identifier: str) -> Tenant | None:
        try:
            doc = await self._store.get(tenant_key(identifier))
        except BackendError as exc:
            log.warning(
                "resolver_backend_failed", step="kv", identifier=identifier, error=str(exc)
            )
            return None
        if not isinstance(doc, dict):
            return None
        return Tenant.from_dict(doc)

    async def _from_relational(
        self,
        step: str,
        lookup: Callable[[str], Awaitable[Tenant | None]],
        identifier: str,
    ) -> Tenant | None:
        try:
            return await lookup(identifier)
        except BackendError as exc:
            log.warning(
                "resolver_backend_failed", step=step, identifier=identifier, error=str(exc)
            )
            return None
