"""Route tests — the admin API over an in-memory fast store and a fake tenants table."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from src.api.deps import (
    get_audit_repo,
    get_kv_store,
    get_plan_catalog,
    get_tenant_repo,
)
from src.api.main import create_app
from src.core.exceptions import RelationalQueryError, StoreUnavailableError
from src.data.kv_store import InMemoryKeyPrefixStore
from src.saas.audit import AuditLogEntry
from src.saas.plans import PlanCatalog
from src.saas.tenant import Tenant, tenant_from_row


class _TenantTable:
    """Relational tenants table kept in a dict."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}

    async def find_by_uuid(self, uuid: str) -> Tenant | None:
        row = self.rows.get(uuid)
        return tenant_from_row(row) if row else None

    async def find_by_external_id(self, code: str) -> Tenant | None:
        row = next((r for r in self.rows.values() if r["settings"].get("external_id") == code), None)
        return tenant_from_row(row) if row else None

    async def list_all(self) -> list[Tenant]:
        return [tenant_from_row(r) for r in self.rows.values()]

    async def insert(self, tenant: Tenant) -> None:
        self.rows[tenant.uuid] = {
            "id": tenant.uuid,
            "name": tenant.name,
            "status": tenant.status.value,
            "mrr": tenant.mrr,
            "settings": dict(tenant.settings),
            "created_at": tenant.created_at,
            "updated_at": tenant.updated_at,
        }

    async def merge_settings(self, uuid: str, patch: dict[str, Any], *, updated_at=None) -> Tenant | None:
        row = self.rows.get(uuid)
        if row is None:
            return None
        row["settings"] = {**row["settings"], **patch}
        row["updated_at"] = updated_at
        return tenant_from_row(row)

    async def update_columns(self, uuid, *, name=None, status=None, mrr=None, updated_at=None) -> None:
        row = self.rows[uuid]
        if updated_at is not None:
            row["updated_at"] = updated_at
        if name is not None:
            row["name"] = name
        if status is not None:
            row["status"] = status.value
        if mrr is not None:
            row["mrr"] = mrr

    async def delete(self, uuid: str) -> bool:
        return self.rows.pop(uuid, None) is not None


@pytest.fixture()
def store() -> InMemoryKeyPrefixStore:
    return InMemoryKeyPrefixStore()


@pytest.fixture()
def table() -> _TenantTable:
    return _TenantTable()


@pytest.fixture()
def audit_repo() -> MagicMock:
    repo = MagicMock()
    repo.insert = AsyncMock()
    repo.list = AsyncMock(return_value=[])
    repo.list_for_resource = AsyncMock(return_value=[])
    return repo


@pytest.fixture()
def client(store, table, audit_repo) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_kv_store] = lambda: store
    app.dependency_overrides[get_tenant_repo] = lambda: table
    app.dependency_overrides[get_audit_repo] = lambda: audit_repo
    app.dependency_overrides[get_plan_catalog] = lambda: PlanCatalog()
    return TestClient(app)


def _create(client: TestClient, name: str = "Seaside Inn", plan: str = "Basic") -> dict[str, Any]:
    slug = name.lower().replace(" ", "-")
    response = client.post(
        "/api/tenants",
        json={"name": name, "subdomain": slug, "plan": plan, "tenant_email": f"front@{slug}.example"},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


# ── Tenants ──────────────────────────────────────────────────────

class TestTenantRoutes:
    def test_create_and_fetch_by_either_identifier(self, client: TestClient) -> None:
        created = _create(client)
        assert created["tenant_id"] == "T-1"
        assert created["mrr"] == 99.0

        by_code = client.get("/api/tenants/T-1").json()
        by_uuid = client.get(f"/api/tenants/{created['uuid']}").json()
        assert by_code["uuid"] == by_uuid["uuid"] == created["uuid"]
        assert by_code["tenant_id"] == by_uuid["tenant_id"] == "T-1"

    def test_create_validation(self, client: TestClient) -> None:
        response = client.post(
            "/api/tenants",
            json={"name": "Inn", "subdomain": "inn", "tenant_email": "a@b.example", "owner_name": "Dana"},
        )
        assert response.status_code == 422

    def test_partial_create_returns_207(self, client: TestClient, table: _TenantTable) -> None:
        table.insert = AsyncMock(side_effect=RelationalQueryError("db down"))
        response = client.post(
            "/api/tenants",
            json={"name": "Inn", "subdomain": "inn", "tenant_email": "a@b.example"},
        )
        assert response.status_code == 207
        body = response.json()
        assert body["success"] is False
        assert body["warnings"][0]["field"] == "relational.tenants"

    def test_unknown_tenant_is_404(self, client: TestClient) -> None:
        response = client.get("/api/tenants/T-404")
        assert response.status_code == 404
        assert "T-404" in response.json()["detail"]

    def test_update_ignores_identity_fields(self, client: TestClient) -> None:
        _create(client)
        response = client.put("/api/tenants/T-1", json={"plan": "Pro", "tenant_id": "T-9"})
        assert response.status_code == 200
        body = response.json()
        assert body["tenant_id"] == "T-1"
        assert body["plan"] == "Pro"
        assert body["mrr"] == 299.0

    def test_settings_category_form(self, client: TestClient) -> None:
        _create(client)
        response = client.put(
            "/api/tenants/T-1/settings",
            json={"category": "housekeeping", "data": {"auto_assign": True}},
        )
        assert response.status_code == 200
        settings = client.get("/api/tenants/T-1/settings").json()["settings"]
        assert settings["housekeeping"] == {"auto_assign": True}

    def test_suspend_and_unsuspend(self, client: TestClient) -> None:
        _create(client)
        suspended = client.post("/api/tenants/T-1/suspend", json={"reason": "unpaid"}).json()
        assert suspended["status"] == "suspended"
        assert suspended["settings"]["suspension_reason"] == "unpaid"

        active = client.post("/api/tenants/T-1/unsuspend").json()
        assert active["status"] == "active"

    def test_list_and_stats(self, client: TestClient) -> None:
        _create(client, "Seaside Inn", "Basic")
        _create(client, "Mountain Lodge", "Pro")

        page = client.get("/api/tenants", params={"plan": "Pro"}).json()
        assert page["total"] == 1
        assert page["data"][0]["name"] == "Mountain Lodge"

        stats = client.get("/api/tenants/stats").json()
        assert stats["total"] == 2
        assert stats["total_mrr"] == 398.0

    def test_delete(self, client: TestClient, store: InMemoryKeyPrefixStore) -> None:
        _create(client)
        assert client.delete("/api/tenants/T-1").status_code == 204
        assert client.get("/api/tenants/T-1").status_code == 404
        assert store.keys() == ["system:tenant_counter"]


# ── Usage ────────────────────────────────────────────────────────

class TestUsageRoutes:
    def test_increment_derives_plan_limit(self, client: TestClient) -> None:
        _create(client)
        client.post("/api/usage/tenants/T-1/api_calls/increment", json={"amount": 5})
        body = client.post("/api/usage/tenants/T-1/api_calls/increment", json={"amount": 3}).json()
        assert body["current"] == 8
        assert body["limit"] == 10_000
        assert body["id"].startswith("usage:T-1:")

    def test_uuid_and_code_share_records(self, client: TestClient) -> None:
        created = _create(client)
        client.post(f"/api/usage/tenants/{created['uuid']}/rooms/increment", json={"amount": 2})
        body = client.post("/api/usage/tenants/T-1/rooms/increment", json={}).json()
        assert body["current"] == 3

    def test_set_and_over_limit(self, client: TestClient) -> None:
        _create(client)
        client.put("/api/usage/tenants/T-1/rooms", json={"value": 25})
        body = client.get("/api/usage/tenants/T-1/rooms/over-limit").json()
        assert body["over_limit"] is True

    def test_overview_reconciles_every_metric(self, client: TestClient) -> None:
        _create(client)
        client.put("/api/usage/tenants/T-1/rooms", json={"value": 4, "limit": 3})
        body = client.get("/api/usage/tenants/T-1").json()
        metrics = {m["metric"]: m for m in body["metrics"]}
        assert body["plan"] == "Basic"
        assert set(metrics) == {"rooms", "users", "properties", "api_calls", "storage"}
        assert metrics["rooms"]["limit"] == 25
        assert metrics["rooms"]["current"] == 4

    def test_reset_and_delete_are_audited(self, client: TestClient, audit_repo: MagicMock) -> None:
        _create(client)
        client.put("/api/usage/tenants/T-1/rooms", json={"value": 4})

        reset = client.post("/api/usage/tenants/T-1/reset").json()
        assert [r["current"] for r in reset] == [0]
        deleted = client.delete("/api/usage/tenants/T-1").json()
        assert deleted["deleted"] == 1

        actions = [c.args[0].action for c in audit_repo.insert.await_args_list]
        assert actions[-2:] == ["usage.reset", "usage.deleted"]

    def test_list_usage(self, client: TestClient) -> None:
        _create(client)
        client.put("/api/usage/tenants/T-1/rooms", json={"value": 1})
        assert len(client.get("/api/usage", params={"tenant_id": "T-1"}).json()) == 1
        assert len(client.get("/api/usage").json()) == 1

    def test_list_usage_by_uuid(self, client: TestClient) -> None:
        created = _create(client)
        client.put("/api/usage/tenants/T-1/rooms", json={"value": 1})
        body = client.get("/api/usage", params={"tenant_id": created["uuid"]}).json()
        assert [r["tenant_id"] for r in body] == ["T-1"]

    def test_list_usage_unknown_tenant_is_404(self, client: TestClient) -> None:
        assert client.get("/api/usage", params={"tenant_id": "T-404"}).status_code == 404
        assert client.get("/api/usage", params={"tenant_id": "a:b"}).status_code == 404

    def test_bad_metric_is_422(self, client: TestClient) -> None:
        _create(client)
        response = client.put("/api/usage/tenants/T-1/api:calls", json={"value": 1})
        assert response.status_code == 422

    def test_bad_period_is_422(self, client: TestClient) -> None:
        _create(client)
        response = client.get("/api/usage/tenants/T-1", params={"period": "March"})
        assert response.status_code == 422

    def test_unknown_tenant_is_404(self, client: TestClient) -> None:
        response = client.post("/api/usage/tenants/T-404/rooms/increment", json={})
        assert response.status_code == 404


# ── Feature flags ────────────────────────────────────────────────

class TestFeatureRoutes:
    def test_create_conflict(self, client: TestClient) -> None:
        assert client.post("/api/features", json={"key": "housekeeping"}).status_code == 201
        assert client.post("/api/features", json={"key": "housekeeping"}).status_code == 409

    def test_invalid_rollout_is_422(self, client: TestClient) -> None:
        response = client.post("/api/features", json={"key": "x", "rollout_percentage": 120})
        assert response.status_code == 422

    def test_update_missing_is_404(self, client: TestClient) -> None:
        assert client.put("/api/features/ff_missing", json={"name": "x"}).status_code == 404

    def test_override_and_check(self, client: TestClient) -> None:
        _create(client)
        client.post("/api/features", json={"key": "housekeeping"})
        assert client.get("/api/features/housekeeping/check/T-1").json()["enabled"] is True

        response = client.post(
            "/api/features/housekeeping/tenants", json={"tenant_id": "T-1", "enabled": False}
        )
        assert response.json()["disabled_for_tenants"] == ["T-1"]
        assert client.get("/api/features/housekeeping/check/T-1").json()["enabled"] is False

    def test_tenant_features_under_plan(self, client: TestClient) -> None:
        _create(client, plan="Basic")
        client.post("/api/features", json={"key": "reports", "scope": "plan"})
        client.post("/api/features/reports/plans", json={"plan": "Pro", "enabled": True})

        features = client.get("/api/features/tenants/T-1").json()

        assert features == [
            {
                "id": features[0]["id"],
                "key": "reports",
                "name": "",
                "description": "",
                "category": None,
                "scope": "plan",
                "enabled": False,
                "rule": "plan",
                "plan_locked": True,
            }
        ]

    def test_tenant_features_unknown_tenant(self, client: TestClient) -> None:
        assert client.get("/api/features/tenants/T-404").status_code == 404

    def test_delete(self, client: TestClient) -> None:
        flag = client.post("/api/features", json={"key": "housekeeping"}).json()
        assert client.delete(f"/api/features/{flag['id']}").status_code == 204
        assert client.get("/api/features").json() == []

    def test_store_down_is_503(self, client: TestClient) -> None:
        broken = MagicMock()
        broken.get_by_prefix = AsyncMock(side_effect=StoreUnavailableError("redis down"))
        client.app.dependency_overrides[get_kv_store] = lambda: broken
        assert client.get("/api/features").status_code == 503


# ── Audit & access ───────────────────────────────────────────────

class TestAuditRoutes:
    def test_list_entries(self, client: TestClient, audit_repo: MagicMock) -> None:
        audit_repo.list = AsyncMock(
            return_value=[
                AuditLogEntry(
                    "tenant.created",
                    "tenant",
                    "T-1",
                    datetime(2025, 6, 1, tzinfo=timezone.utc),
                    actor="admin",
                    entry_id="e1",
                )
            ]
        )
        body = client.get("/api/audit-logs", params={"tenant_id": "T-1"}).json()
        assert body[0]["entry_id"] == "e1"
        assert body[0]["action"] == "tenant.created"
        audit_repo.list.assert_awaited_once_with("T-1", limit=50, offset=0)

    def test_resource_filter(self, client: TestClient, audit_repo: MagicMock) -> None:
        client.get("/api/audit-logs", params={"resource_type": "feature_flag", "resource_id": "ff_1"})
        audit_repo.list_for_resource.assert_awaited_once_with("feature_flag", "ff_1")


class TestAdminKey:
    def test_key_enforced_when_configured(self, client: TestClient) -> None:
        mock_settings = MagicMock()
        mock_settings.admin_api_key.get_secret_value.return_value = "s3cret"
        with patch("src.api.middleware.get_settings", return_value=mock_settings):
            assert client.get("/api/features").status_code == 401
            assert client.get("/api/features", headers={"X-Admin-Key": "nope"}).status_code == 403
            assert client.get("/api/features", headers={"X-Admin-Key": "s3cret"}).status_code == 200

    def test_health_needs_no_key(self, client: TestClient) -> None:
        mock_settings = MagicMock()
        mock_settings.admin_api_key.get_secret_value.return_value = "s3cret"
        with patch("src.api.middleware.get_settings", return_value=mock_settings):
            from src.api.deps import get_db_engine

            engine = MagicMock()
            engine.connect = MagicMock(side_effect=OSError("no db"))
            client.app.dependency_overrides[get_db_engine] = lambda: engine
            assert client.get("/api/health").status_code == 200
