"""Tests for the KPI API: caller resolution, tenant pinning, snapshot responses."""

from unittest.mock import patch

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dashboard.api.main import app
from dashboard.api.middleware import APIKeyMiddleware, _hash_key
from dashboard.api.routers.kpis import get_engine, router as kpis_router
from factories import GYM, FakeStore, day, event
from scripts.kpi_engine.engine import KpiEngine
from scripts.kpi_engine.vocabulary import load_vocabulary
from scripts.lib.errors import DataFetchError

KEYS = {
    _hash_key("owner-key"): {"id": 1, "role": "owner", "profile_id": "o1", "gym_id": GYM, "active": True},
    _hash_key("trainer-key"): {"id": 2, "role": "trainer", "profile_id": "r1", "gym_id": GYM, "active": True},
    _hash_key("client-key"): {"id": 3, "role": "client", "profile_id": "c1", "gym_id": GYM, "active": True},
}


def _store():
    events = [
        event("LEAD_CREATED", day(1), lead="c1"),
        event("LEAD_CREATED", day(1), lead="c2", gym="gym-2"),
        event("SALE_RECORDED", day(2), lead="c1", total_paid=250),
    ]
    return FakeStore(events, {"c1": ("QR Code Scan", "r1")}, (("r1", "Sam"), ("r2", "Alex")))


def _make_app(store, require_auth=False):
    test_app = FastAPI()
    test_app.add_middleware(APIKeyMiddleware, require_auth=require_auth, lookup=KEYS.get)
    test_app.include_router(kpis_router)
    engine = KpiEngine(store, store, store, vocabulary=load_vocabulary())
    test_app.dependency_overrides[get_engine] = lambda: engine
    return test_app


PERIOD = {"start": "2025-06-01T00:00:00Z", "end": "2025-07-01T00:00:00Z"}


class TestSnapshotEndpoint:
    def test_owner_gets_money_groups(self):
        client = TestClient(_make_app(_store()))
        resp = client.get("/api/kpis/snapshot", params=PERIOD, headers={"X-API-Key": "owner-key"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["tenant_id"] == GYM
        assert data["funnel"]["leads"] == 1
        assert data["revenue"]["total_revenue"] == 250

    def test_owner_cannot_switch_gym(self):
        client = TestClient(_make_app(_store()))
        resp = client.get(
            "/api/kpis/snapshot", params={**PERIOD, "gym_id": "gym-2"},
            headers={"X-API-Key": "owner-key"},
        )
        assert resp.json()["tenant_id"] == GYM

    def test_dev_mode_admin_picks_gym(self):
        client = TestClient(_make_app(_store()))
        resp = client.get("/api/kpis/snapshot", params={**PERIOD, "gym_id": "gym-2"})
        data = resp.json()
        assert data["tenant_id"] == "gym-2"
        assert data["funnel"]["leads"] == 1
        assert data["revenue"]["total_revenue"] == 0

    def test_admin_without_gym_is_scope_unavailable(self):
        client = TestClient(_make_app(_store()))
        resp = client.get("/api/kpis/snapshot", params=PERIOD)
        assert resp.status_code == 200
        assert resp.json()["status"] == "scope_unavailable"

    def test_trainer_sees_overview_and_own_row(self):
        client = TestClient(_make_app(_store()))
        resp = client.get("/api/kpis/snapshot", params=PERIOD, headers={"X-API-Key": "trainer-key"})
        data = resp.json()
        assert "revenue" not in data
        assert "ad_efficiency" not in data
        rows = data["leaderboard"]["rows"]
        assert [r["rep_id"] for r in rows] == ["r1"]

    def test_groups_param_narrows(self):
        client = TestClient(_make_app(_store()))
        resp = client.get(
            "/api/kpis/snapshot", params={**PERIOD, "groups": "funnel,revenue"},
            headers={"X-API-Key": "owner-key"},
        )
        data = resp.json()
        assert data["visible_groups"] == ["funnel", "revenue"]
        assert data["revenue"]["total_revenue"] == 250
        assert "leaderboard" not in data

    def test_groups_param_cannot_widen(self):
        client = TestClient(_make_app(_store()))
        resp = client.get(
            "/api/kpis/snapshot", params={**PERIOD, "groups": "revenue,leaderboard"},
            headers={"X-API-Key": "trainer-key"},
        )
        data = resp.json()
        assert data["visible_groups"] == ["leaderboard"]
        assert "revenue" not in data

    def test_client_role_sees_nothing(self):
        client = TestClient(_make_app(_store()))
        resp = client.get("/api/kpis/snapshot", params=PERIOD, headers={"X-API-Key": "client-key"})
        data = resp.json()
        assert data["visible_groups"] == []
        assert "funnel" not in data

    def test_fetch_failure_is_flagged_not_500(self):
        store = FakeStore(fail_with=DataFetchError("timeout", source="raw_entries"))
        client = TestClient(_make_app(store))
        resp = client.get("/api/kpis/snapshot", params=PERIOD, headers={"X-API-Key": "owner-key"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "scope_unavailable"
        assert data["funnel"]["leads"] == 0

    def test_unexpected_failure_is_500(self):
        store = FakeStore(fail_with=RuntimeError("bug"))
        client = TestClient(_make_app(store))
        resp = client.get("/api/kpis/snapshot", params=PERIOD, headers={"X-API-Key": "owner-key"})
        assert resp.status_code == 500


class TestAuth:
    def test_missing_key_when_required(self):
        client = TestClient(_make_app(_store(), require_auth=True))
        resp = client.get("/api/kpis/snapshot", params=PERIOD)
        assert resp.status_code == 401

    def test_invalid_key(self):
        client = TestClient(_make_app(_store()))
        resp = client.get("/api/kpis/snapshot", params=PERIOD, headers={"X-API-Key": "wrong"})
        assert resp.status_code == 403

    def test_lookup_outage_is_anonymous(self):
        def broken(_):
            raise ConnectionError("supabase down")

        test_app = FastAPI()
        test_app.add_middleware(APIKeyMiddleware, lookup=broken)
        test_app.include_router(kpis_router)
        client = TestClient(test_app)
        resp = client.get("/api/kpis/permissions", headers={"X-API-Key": "owner-key"})
        assert resp.status_code == 200
        assert resp.json()["visible_groups"] == []

    def test_permissions_endpoint(self):
        client = TestClient(_make_app(_store()))
        data = client.get("/api/kpis/permissions", headers={"X-API-Key": "trainer-key"}).json()
        assert data["role"] == "trainer"
        assert data["self_only"] is True
        assert data["all_setters"] is False
        assert "revenue" not in data["visible_groups"]
        assert "funnel" in data["visible_groups"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_without_supabase(self):
        with patch("scripts.lib.supabase_client.get_client", side_effect=RuntimeError("no env")):
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
                resp = await ac.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["integrations"]["supabase"] is False
