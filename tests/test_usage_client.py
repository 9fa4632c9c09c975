"""
Tests for the admin API data source, with the HTTP session mocked.
"""
import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from app.cache import DataScope, FetchParams
from app.fetcher import Session
from app.usage_client import UsageApiClient


SESSION = Session(token="tok-123")
JANUARY = FetchParams("2024-01-01", "2024-01-31")


def _response(payload, status=200):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error", response=response)
    return response


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(http):
    return UsageApiClient(base_url="https://admin.test/", timeout=5, http=http)


def test_usage_query_uses_narrowest_id(client, http):
    http.get.return_value = _response({"transactions_total": {"2024-01-01": {"sum": 5}}})

    data = asyncio.run(client.fetch_account_usage(DataScope.keyset(7, 11, app_id=1), JANUARY, SESSION))

    assert data == {"transactions_total": {"2024-01-01": {"sum": 5}}}
    args, kwargs = http.get.call_args
    assert args[0] == "https://admin.test/api/v4/services/usage/legacy/usage"
    assert kwargs["headers"] == {"X-Session-Token": "tok-123"}
    assert kwargs["params"]["key_id"] == 11
    assert "app_id" not in kwargs["params"]
    assert kwargs["params"]["start"] == "2024-01-01"
    assert kwargs["params"]["end"] == "2024-01-31"
    assert kwargs["timeout"] == 5


def test_account_usage_query(client, http):
    http.get.return_value = _response({})
    asyncio.run(client.fetch_account_usage(DataScope.account(7), JANUARY, SESSION))
    assert http.get.call_args.kwargs["params"]["account_id"] == 7


def test_apps_unwraps_result_and_narrows(client, http):
    http.get.return_value = _response({"result": [{"id": 1}, {"id": 2}], "total": 2})

    all_apps = asyncio.run(client.fetch_apps(DataScope.account(7), JANUARY, SESSION))
    one_app = asyncio.run(client.fetch_apps(DataScope.app(7, 2), JANUARY, SESSION))

    assert all_apps == [{"id": 1}, {"id": 2}]
    assert one_app == [{"id": 2}]
    assert http.get.call_args.kwargs["params"]["owner_id"] == 7


def test_account_keys_fan_out_per_app_and_tag_app_id(client, http):
    def fake_get(url, headers, params, timeout):
        if url.endswith("apps-simplified"):
            return _response({"result": [{"id": 1}, {"id": 2}]})
        return _response([{"id": params["app_id"] * 10}])

    http.get.side_effect = fake_get

    keys = asyncio.run(client.fetch_keys(DataScope.account(7), JANUARY, SESSION))

    assert sorted(keys, key=lambda k: k["id"]) == [
        {"id": 10, "app_id": 1},
        {"id": 20, "app_id": 2},
    ]


def test_keyset_scope_filters_app_keys(client, http):
    http.get.return_value = _response({"result": [{"id": 11}, {"id": 12}]})

    keys = asyncio.run(client.fetch_keys(DataScope.keyset(7, 12, app_id=1), JANUARY, SESSION))

    assert keys == [{"id": 12, "app_id": 1}]
    assert http.get.call_args.kwargs["params"]["app_id"] == 1


def test_http_errors_propagate_without_retry(client, http):
    http.get.return_value = _response({"error": "forbidden"}, status=403)

    with pytest.raises(requests.HTTPError):
        asyncio.run(client.fetch_account_usage(DataScope.account(7), JANUARY, SESSION))
    assert http.get.call_count == 1


def test_close_closes_http_session(client, http):
    client.close()
    http.close.assert_called_once()
