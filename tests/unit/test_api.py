"""HTTP surface: routing, envelope and error mapping over in-memory services."""

import pytest

from src.cl_allocation.api.router import get_allocation_service
from src.cl_cycle.api.router import get_cycle_manager
from src.cl_ledger.api.router import get_ledger_recorder
from src.cl_participation.api.router import get_participation_service
from src.cl_payout.api.router import get_payout_service
from src.main import app


@pytest.fixture
async def api(store, client):
    app.dependency_overrides[get_cycle_manager] = lambda: store.manager
    app.dependency_overrides[get_allocation_service] = lambda: store.allocation
    app.dependency_overrides[get_participation_service] = lambda: store.participation_service
    app.dependency_overrides[get_payout_service] = lambda: store.payouts
    app.dependency_overrides[get_ledger_recorder] = lambda: store.recorder
    return client


async def _open_cycle_with_line(api) -> tuple[str, str]:
    resp = await api.post(
        "/api/v1/cycles",
        json={"name": "C1", "started_at": "2026-01-01T00:00:00Z", "initial_injection_isk": "1000"},
    )
    cycle_id = resp.json()["data"]["id"]
    line = await api.post(
        f"/api/v1/cycles/{cycle_id}/lines",
        json={"type_id": 34, "destination_station_id": 60003760, "planned_units": 1000},
    )
    await api.post(f"/api/v1/cycles/{cycle_id}/open")
    return cycle_id, line.json()["data"]["id"]


def _fill(ref: str, side: str, qty, price: str) -> dict:
    return {
        "side": side, "type_id": 34, "station_id": 60003760, "quantity": qty,
        "unit_price_isk": price, "external_ref_id": ref, "occurred_at": "2026-01-03T10:00:00Z",
    }


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestCycleRoutes:
    async def test_plan_and_get(self, api):
        resp = await api.post("/api/v1/cycles", json={"started_at": "2026-01-01T00:00:00Z"})
        assert resp.status_code == 201
        body = resp.json()
        assert body["code"] == 0
        assert body["data"]["status"] == "PLANNED"

        got = await api.get(f"/api/v1/cycles/{body['data']['id']}")
        assert got.json()["data"]["initial_injection_isk"] == "0.00"

    async def test_request_id_is_echoed(self, api):
        resp = await api.get("/api/v1/cycles", headers={"X-Request-ID": "req_test123"})
        assert resp.headers["X-Request-ID"] == "req_test123"
        assert resp.json()["request_id"] == "req_test123"

    async def test_list_by_status(self, api):
        await _open_cycle_with_line(api)
        await api.post("/api/v1/cycles", json={"started_at": "2026-02-01T00:00:00Z"})
        resp = await api.get("/api/v1/cycles", params={"status": "OPEN"})
        assert [c["status"] for c in resp.json()["data"]["items"]] == ["OPEN"]

    async def test_unknown_cycle_is_404_envelope(self, api):
        resp = await api.get("/api/v1/cycles/cyc_missing")
        assert resp.status_code == 404
        body = resp.json()
        assert body["code"] == 1001
        assert body["data"] is None

    async def test_state_conflict_names_both_states(self, api):
        resp = await api.post("/api/v1/cycles", json={"started_at": "2026-01-01T00:00:00Z"})
        cycle_id = resp.json()["data"]["id"]
        close = await api.post(f"/api/v1/cycles/{cycle_id}/close")
        assert close.status_code == 409
        assert "status is PLANNED, requires OPEN" in close.json()["message"]

    async def test_close_and_invariants(self, api):
        cycle_id, _ = await _open_cycle_with_line(api)
        close = await api.post(f"/api/v1/cycles/{cycle_id}/close", json={})
        assert close.status_code == 200
        assert close.json()["data"]["cycle"]["status"] == "CLOSED"

        audit = await api.get("/api/v1/admin/invariants", params={"cycle_id": cycle_id})
        assert audit.json()["data"]["ok"] is True

    async def test_line_fee_routes(self, api):
        cycle_id, line_id = await _open_cycle_with_line(api)
        resp = await api.post(f"/api/v1/lines/{line_id}/broker-fee", json={"amount_isk": "12.50"})
        assert resp.json()["data"]["broker_fees_isk"] == "12.50"
        profit = await api.get(f"/api/v1/cycles/{cycle_id}/profit")
        assert profit.json()["data"]["cycle_profit_isk"] == "-12.50"

    async def test_delete_line(self, api):
        _, line_id = await _open_cycle_with_line(api)
        resp = await api.delete(f"/api/v1/lines/{line_id}")
        assert resp.json()["data"] == {"line_id": line_id, "deleted": True}


class TestAllocationRoutes:
    async def test_ingest_and_reconcile(self, api):
        cycle_id, line_id = await _open_cycle_with_line(api)
        ingest = await api.post(
            "/api/v1/fills",
            json={"fills": [_fill("T1", "BUY", 400, "5.00"), _fill("T2", "BUY", None, "5.00")]},
        )
        assert ingest.status_code == 201
        assert ingest.json()["data"]["malformed"] == 1

        resp = await api.post("/api/v1/reconcile", json={})
        data = resp.json()["data"]
        assert data["cycle_id"] == cycle_id
        assert data["buys_allocated"] == 1

        lines = await api.get(f"/api/v1/cycles/{cycle_id}/lines")
        assert lines.json()["data"]["items"][0]["units_bought"] == 400

    async def test_direct_batch_reports_counts(self, api):
        cycle_id, _ = await _open_cycle_with_line(api)
        resp = await api.post(
            f"/api/v1/cycles/{cycle_id}/fills",
            json={"fills": [_fill("T1", "BUY", 400, "5.00"), _fill("T1", "BUY", 400, "5.00")]},
        )
        data = resp.json()["data"]
        assert data["buys_allocated"] == 1
        assert data["duplicates"] == 1

    async def test_ledger_route(self, api):
        cycle_id, _ = await _open_cycle_with_line(api)
        await api.post(f"/api/v1/cycles/{cycle_id}/fills", json={"fills": [_fill("T1", "BUY", 10, "5.00")]})
        resp = await api.get(f"/api/v1/cycles/{cycle_id}/ledger", params={"entry_type": "execution"})
        items = resp.json()["data"]["items"]
        assert [i["amount_cents"] for i in items] == [-5000]


class TestParticipationRoutes:
    async def test_join_transfer_and_match(self, api):
        resp = await api.post("/api/v1/cycles", json={"started_at": "2026-01-01T00:00:00Z"})
        cycle_id = resp.json()["data"]["id"]
        joined = await api.post(
            f"/api/v1/cycles/{cycle_id}/participations",
            json={"user_id": "u1", "character_name": "Alpha Trader", "amount_isk": "5000000.00"},
        )
        assert joined.status_code == 201
        pid = joined.json()["data"]["id"]

        staged = await api.post(
            "/api/v1/transfers",
            json={"events": [{
                "ref_id": "J1", "amount_isk": "5000000.00",
                "occurred_at": "2025-12-30T00:00:00Z", "character_name": "Alpha Trader",
            }]},
        )
        assert staged.status_code == 201

        matched = await api.post("/api/v1/transfers/match", json={})
        assert matched.json()["data"]["matched"] == 1

        got = await api.get(f"/api/v1/participations/{pid}")
        assert got.json()["data"]["status"] == "OPTED_IN"

    async def test_invalid_custom_rollover_is_422(self, api):
        resp = await api.post("/api/v1/cycles", json={"started_at": "2026-01-01T00:00:00Z"})
        cycle_id = resp.json()["data"]["id"]
        bad = await api.post(
            f"/api/v1/cycles/{cycle_id}/participations",
            json={"character_name": "A", "amount_isk": "1", "rollover_type": "CUSTOM_AMOUNT"},
        )
        assert bad.status_code == 422


class TestPayoutRoutes:
    async def test_suggest(self, api):
        cycle_id, _ = await _open_cycle_with_line(api)
        resp = await api.get(f"/api/v1/cycles/{cycle_id}/payouts/suggest")
        assert resp.status_code == 200
        assert resp.json()["data"]["payouts"] == []

    async def test_bad_pct_is_422(self, api):
        cycle_id, _ = await _open_cycle_with_line(api)
        resp = await api.get(
            f"/api/v1/cycles/{cycle_id}/payouts/suggest", params={"profit_share_pct": "2"}
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == 5003
