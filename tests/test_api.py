"""
Tests for the HTTP surface, with the orchestrator backed by a fake data source.
"""
import pytest
import requests
from fastapi.testclient import TestClient

from app import main
from app.main import app, get_orchestrator
from app.fetcher import FetchOrchestrator


@pytest.fixture
def api_orchestrator(data_source, clock):
    return FetchOrchestrator(data_source, clock=clock)


@pytest.fixture
def client(api_orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: api_orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_endpoint_returns_ok(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_usage_fetch_then_hit(client, data_source):
    params = {"accountid": 7, "start": "2024-01-01", "end": "2024-01-31", "token": "t"}

    first = client.get("/usage", params=params).json()
    second = client.get("/usage", params=params).json()

    assert first["from_cache"] is False
    assert first["strategy"] == "miss"
    assert first["data"]["scope"] == "account"
    assert second["from_cache"] is True
    assert second["strategy"] == "hit"
    assert data_source.count("usage") == 1


def test_usage_scope_follows_narrowest_id(client, data_source):
    client.get("/usage", params={"accountid": 7, "appid": 1, "keyid": 11, "token": "t"})
    scope = data_source.calls[0][1]
    assert scope.level.value == "keyset"
    assert scope.key_id == 11
    assert scope.app_id == 1


def test_missing_token_skips_fetch(client, data_source):
    body = client.get("/apps", params={"accountid": 7}).json()
    assert body["skipped"] is True
    assert body["data"] == []
    assert data_source.calls == []


def test_cached_usage_not_served_without_token(client, data_source):
    window = {"accountid": 7, "start": "2024-01-01", "end": "2024-01-31"}
    client.get("/usage", params={**window, "token": "t"})

    body = client.get("/usage", params=window).json()

    assert body["skipped"] is True
    assert body["data"] == {}
    assert body["from_cache"] is False
    assert data_source.count("usage") == 1


def test_app_list_derived_from_account_list(client, data_source):
    client.get("/apps", params={"accountid": 7, "start": "2024-01-01", "end": "2024-01-31", "token": "t"})
    body = client.get(
        "/apps",
        params={"accountid": 7, "appid": 2, "start": "2024-01-05", "end": "2024-01-10", "token": "t"},
    ).json()

    assert body["strategy"] == "derivable"
    assert body["from_cache"] is True
    assert [app["id"] for app in body["data"]] == [2]
    assert data_source.count("apps") == 1


def test_reversed_window_is_rejected(client):
    response = client.get("/usage", params={"accountid": 7, "start": "2024-02-01", "end": "2024-01-01"})
    assert response.status_code == 422


def test_upstream_http_error_maps_to_status(client, data_source):
    upstream = requests.Response()
    upstream.status_code = 403
    data_source.error = requests.HTTPError("forbidden", response=upstream)

    response = client.get("/keys", params={"accountid": 7, "appid": 1, "token": "t"})

    assert response.status_code == 403


def test_upstream_connection_error_is_bad_gateway(client, data_source):
    data_source.error = requests.ConnectionError("down")
    response = client.get("/keys", params={"accountid": 7, "token": "t"})
    assert response.status_code == 502


def test_invalidate_and_metrics_endpoints(client):
    window = {"start": "2024-01-01", "end": "2024-01-31", "token": "t"}
    client.get("/usage", params={"accountid": 7, **window})
    client.get("/usage", params={"accountid": 7, **window})

    metrics = client.get("/cache/metrics").json()
    assert metrics["usage"]["hits"] == 1
    assert metrics["usage"]["size"] == 1

    rates = client.get("/cache/hit-rates").json()
    assert rates["usage"] == 0.5

    response = client.post("/cache/invalidate", json={"level": "app", "account_id": 7, "app_id": 1})
    body = response.json()
    # The account entry contains app 1, so it goes too
    assert body["removed"] == 1
    assert body["scope"]["level"] == "app"

    stats = client.get("/cache/stats").json()
    assert stats["caches"]["usage"]["size"] == 0


def test_invalidate_accepts_ids_as_strings(client):
    client.get("/apps", params={"accountid": 7, "token": "t"})

    body = client.post("/cache/invalidate", json={"level": "account", "account_id": "7"}).json()

    assert body["removed"] == 1
    assert body["scope"]["accountId"] == 7


def test_shutdown_closes_orchestrator(api_orchestrator, data_source, monkeypatch):
    monkeypatch.setattr(main, "_orchestrator", api_orchestrator)

    with TestClient(app):
        pass

    assert data_source.closed is True
    assert main._orchestrator is None


def test_invalidate_rejects_incomplete_scope(client):
    response = client.post("/cache/invalidate", json={"level": "keyset", "account_id": 7})
    assert response.status_code == 422


def test_clear_endpoint(client):
    client.get("/apps", params={"accountid": 7, "token": "t"})
    assert client.post("/cache/clear").json() == {"status": "cleared"}
    assert client.get("/cache/metrics").json()["apps"]["size"] == 0
