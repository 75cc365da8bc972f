"""Tests for TenantResolver — fast store first, relational fallback."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.exceptions import RelationalQueryError, StoreUnavailableError
from src.core.types import ResolutionSource, TenantPlan
from src.data.kv_store import InMemoryKeyPrefixStore
from src.saas.resolver import TenantResolver, is_uuid
from src.saas.tenant import tenant_from_row

UUID = "7d1f0c2a-5b3e-4f6a-9c8d-0e1f2a3b4c5d"


def _tenant():
    return tenant_from_row(
        {
            "id": UUID,
            "name": "Harbour Hotel",
            "status": "active",
            "mrr": 299,
            "settings": {"external_id": "T-5", "plan": "Pro", "subdomain": "harbour"},
            "created_at": datetime(2025, 2, 1, tzinfo=timezone.utc),
        }
    )


def _relational(tenant=None) -> MagicMock:
    """Relational lookup answering for both the UUID and the external code."""
    repo = MagicMock()
    repo.find_by_uuid = AsyncMock(
        side_effect=lambda u: tenant if tenant and u == tenant.uuid else None
    )
    repo.find_by_external_id = AsyncMock(
        side_effect=lambda c: tenant if tenant and c == tenant.tenant_id else None
    )
    return repo


class TestIsUuid:
    def test_shapes(self) -> None:
        assert is_uuid(UUID)
        assert is_uuid(UUID.upper())
        assert not is_uuid("T-5")
        assert not is_uuid(UUID + "0")


class TestResolveFastStore:
    @pytest.mark.asyncio
    async def test_fast_store_hit_short_circuits(self) -> None:
        store = InMemoryKeyPrefixStore()
        tenant = _tenant()
        await store.set("tenant:T-5", tenant.to_dict())
        relational = _relational(tenant)

        identity = await TenantResolver(store, relational).resolve("T-5")

        assert identity.found
        assert identity.source is ResolutionSource.FAST_STORE
        assert identity.tenant_id == "T-5"
        relational.find_by_uuid.assert_not_awaited()
        relational.find_by_external_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_same_attributes_for_every_identifier(self) -> None:
        store = InMemoryKeyPrefixStore()
        tenant = _tenant()
        await store.set("tenant:T-5", tenant.to_dict())
        resolver = TenantResolver(store, _relational(tenant))

        by_key = await resolver.resolve("T-5")
        by_uuid = await resolver.resolve(UUID)

        assert by_key.tenant == by_uuid.tenant
        assert by_uuid.source is ResolutionSource.RELATIONAL


class TestResolveRelational:
    @pytest.mark.asyncio
    async def test_uuid_and_code_return_same_record(self) -> None:
        tenant = _tenant()
        relational = _relational(tenant)
        resolver = TenantResolver(InMemoryKeyPrefixStore(), relational)

        by_uuid = await resolver.resolve(UUID)
        by_code = await resolver.resolve("T-5")

        assert by_uuid.source is ResolutionSource.RELATIONAL
        assert by_code.source is ResolutionSource.RELATIONAL
        assert by_uuid.tenant == by_code.tenant
        assert by_code.tenant.plan is TenantPlan.PRO
        assert by_code.identifiers == ["T-5", UUID]

    @pytest.mark.asyncio
    async def test_code_skips_primary_key_lookup(self) -> None:
        relational = _relational(_tenant())
        await TenantResolver(InMemoryKeyPrefixStore(), relational).resolve("T-5")
        relational.find_by_uuid.assert_not_awaited()
        relational.find_by_external_id.assert_awaited_once_with("T-5")

    @pytest.mark.asyncio
    async def test_uuid_miss_falls_through_to_code_lookup(self) -> None:
        relational = _relational(None)
        identity = await TenantResolver(InMemoryKeyPrefixStore(), relational).resolve(UUID)
        assert not identity.found
        relational.find_by_uuid.assert_awaited_once_with(UUID)
        relational.find_by_external_id.assert_awaited_once_with(UUID)

    @pytest.mark.asyncio
    async def test_miss_is_unresolved(self) -> None:
        identity = await TenantResolver(InMemoryKeyPrefixStore(), _relational()).resolve("T-404")
        assert identity.source is ResolutionSource.UNRESOLVED
        assert identity.tenant is None
        assert identity.tenant_id is None
        assert identity.identifiers == []

    @pytest.mark.asyncio
    async def test_misses_are_not_cached(self) -> None:
        relational = _relational()
        resolver = TenantResolver(InMemoryKeyPrefixStore(), relational)
        await resolver.resolve("T-404")
        await resolver.resolve("T-404")
        assert relational.find_by_external_id.await_count == 2

    @pytest.mark.asyncio
    async def test_no_relational_backend(self) -> None:
        identity = await TenantResolver(InMemoryKeyPrefixStore(), None).resolve("T-5")
        assert not identity.found


class TestResolveDegradation:
    @pytest.mark.asyncio
    async def test_empty_identifier_does_no_io(self) -> None:
        store = MagicMock()
        store.get = AsyncMock()
        identity = await TenantResolver(store, _relational()).resolve("  ")
        assert not identity.found
        store.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fast_store_failure_falls_back(self) -> None:
        store = MagicMock()
        store.get = AsyncMock(side_effect=StoreUnavailableError("down"))
        identity = await TenantResolver(store, _relational(_tenant())).resolve("T-5")
        assert identity.source is ResolutionSource.RELATIONAL

    @pytest.mark.asyncio
    async def test_uuid_lookup_failure_continues_chain(self) -> None:
        tenant = _tenant()
        relational = _relational(tenant)
        relational.find_by_uuid = AsyncMock(side_effect=RelationalQueryError("timeout"))
        relational.find_by_external_id = AsyncMock(return_value=tenant)

        identity = await TenantResolver(InMemoryKeyPrefixStore(), relational).resolve(UUID)

        assert identity.found
        relational.find_by_external_id.assert_awaited_once_with(UUID)

    @pytest.mark.asyncio
    async def test_all_backends_down_is_unresolved(self) -> None:
        store = MagicMock()
        store.get = AsyncMock(side_effect=StoreUnavailableError("down"))
        relational = MagicMock()
        relational.find_by_uuid = AsyncMock(side_effect=RelationalQueryError("down"))
        relational.find_by_external_id = AsyncMock(side_effect=RelationalQueryError("down"))

        identity = await TenantResolver(store, relational).resolve(UUID)

        assert identity.source is ResolutionSource.UNRESOLVED
