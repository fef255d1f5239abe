"""Admin HTTP API over a live engine."""

from __future__ import annotations

import pytest

duckdb = pytest.importorskip("duckdb")
pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from duck_sync import DriverKind, DuckSync
from duck_sync.server.http import create_admin_app

ORDERS_CACHE = {
    "name": "orders_cache",
    "source": "warehouse",
    "query": "SELECT * FROM orders",
    "monitor_tables": ["orders"],
    "ttl_seconds": 3600,
}


@pytest.fixture
def client(engine) -> TestClient:
    return TestClient(create_admin_app(engine))


def test_sources_can_be_registered_and_listed(client: TestClient) -> None:
    response = client.post(
        "/sources",
        json={"name": "finance", "credential": "finance_secret"},
    )

    assert response.status_code == 201
    assert response.json()["driver"] == "snowflake"
    assert response.json()["passthrough_enabled"] is False
    names = [source["name"] for source in client.get("/sources").json()]
    assert names == ["finance", "warehouse"]


def test_unknown_driver_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/sources",
        json={"name": "legacy", "driver": "oracle", "credential": "secret"},
    )

    assert response.status_code == 422
    assert "driver_type must be one of" in response.json()["detail"]


def test_cache_lifecycle(client: TestClient) -> None:
    created = client.post("/caches", json=ORDERS_CACHE)
    assert created.status_code == 201
    body = created.json()
    assert body["table"] == "ducksync.warehouse.orders_cache"
    assert body["state"]["refresh_count"] == 0
    assert body["state"]["last_refresh"] is None

    first = client.post("/caches/orders_cache/refresh")
    assert first.json()["result"] == "REFRESHED"
    assert first.json()["rows_refreshed"] == 3

    second = client.post("/caches/orders_cache/refresh")
    assert second.json() == {
        "result": "SKIPPED",
        "message": "Cache is fresh, no refresh needed",
        "rows_refreshed": None,
        "duration_ms": None,
    }

    forced = client.post("/caches/orders_cache/refresh", params={"force": "true"})
    assert forced.json()["result"] == "REFRESHED"

    detail = client.get("/caches/orders_cache").json()
    assert detail["state"]["refresh_count"] == 2
    assert detail["state"]["last_row_count"] == 3
    assert [cache["name"] for cache in client.get("/caches").json()] == ["orders_cache"]

    assert client.delete("/caches/orders_cache").status_code == 200
    assert client.get("/caches/orders_cache").status_code == 404


def test_refresh_errors_are_reported_in_the_body(client: TestClient) -> None:
    response = client.post("/caches/missing/refresh")

    assert response.status_code == 200
    assert response.json()["result"] == "ERROR"
    assert response.json()["message"] == "Cache 'missing' not found"


def test_invalid_cache_payload_is_rejected(client: TestClient) -> None:
    response = client.post("/caches", json={**ORDERS_CACHE, "ttl_seconds": 0})
    assert response.status_code == 422

    response = client.post("/caches", json={**ORDERS_CACHE, "source": "nowhere"})
    assert response.status_code == 404


def test_query_is_routed_to_cache(client: TestClient) -> None:
    client.post("/caches", json=ORDERS_CACHE)

    response = client.post(
        "/query",
        json={
            "sql": "SELECT id FROM orders_cache WHERE total > 100 ORDER BY id",
            "source": "warehouse",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["strategy"] == "cache"
    assert body["rows"] == [{"id": 2}, {"id": 3}]
    assert body["row_count"] == 2
    assert body["columns"][0]["name"] == "id"


def test_dry_run_returns_decision_only(client: TestClient) -> None:
    client.post("/caches", json=ORDERS_CACHE)
    sql = "SELECT * FROM orders JOIN shipments ON orders.id = shipments.order_id"

    body = client.post(
        "/query", json={"sql": sql, "source": "warehouse", "dry_run": True}
    ).json()

    assert body["strategy"] == "passthrough"
    assert body["query"] == sql
    assert body["rows"] is None


def test_query_errors_map_to_status_codes(client: TestClient) -> None:
    client.post("/sources", json={"name": "locked", "credential": "locked_secret"})

    locked = client.post("/query", json={"sql": "SELECT 1", "source": "locked"})
    missing = client.post("/query", json={"sql": "SELECT 1", "source": "nowhere"})

    assert locked.status_code == 403
    assert missing.status_code == 404


def test_source_in_use_cannot_be_deleted(client: TestClient) -> None:
    client.post("/caches", json=ORDERS_CACHE)

    assert client.delete("/sources/warehouse").status_code == 409
    client.delete("/caches/orders_cache")
    assert client.delete("/sources/warehouse").status_code == 200


def test_uninitialised_engine_reports_conflict(warehouse) -> None:
    engine = DuckSync(
        duckdb.connect(database=":memory:"),
        connectors={DriverKind.SNOWFLAKE: warehouse},
    )
    client = TestClient(create_admin_app(engine))

    response = client.get("/sources")

    assert response.status_code == 409
    engine.close()
