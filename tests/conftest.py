"""
Shared fixtures: controllable clock and an in-memory remote data source.
"""
import asyncio
from typing import Any, List, Optional, Tuple

import pytest

from app.cache import DataScope, FetchParams, ScopeLevel
from app.fetcher import FetchOrchestrator, RemoteDataSource, Session


class FakeClock:
    """Manually advanced timestamp source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDataSource(RemoteDataSource):
    """
    Records every call and answers like the upstream would: each scope gets
    its own aggregate for usage, lists are narrowed to the scope.
    """

    def __init__(self):
        self.calls: List[Tuple[str, DataScope, FetchParams]] = []
        self.apps = [
            {"id": 1, "name": "Chat", "owner_id": 7},
            {"id": 2, "name": "Presence", "owner_id": 7},
        ]
        self.keys = [
            {"id": 11, "app_id": 1, "properties": {"name": "prod"}},
            {"id": 12, "app_id": 2, "properties": {"name": "staging"}},
            {"id": 13, "app_id": 2, "properties": {"name": "dev"}},
        ]
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.closed = False

    async def _respond(self, name: str, scope: DataScope, params: FetchParams, payload: Any) -> Any:
        self.calls.append((name, scope, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return payload

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def fetch_account_usage(self, scope, params, session):
        payload = {
            "transactions_total": {params.start_date: {"sum": 100}},
            "scope": scope.level.value,
        }
        return await self._respond("usage", scope, params, payload)

    async def fetch_apps(self, scope, params, session):
        apps = self.apps
        if scope.level != ScopeLevel.ACCOUNT:
            apps = [app for app in apps if app["id"] == scope.app_id]
        return await self._respond("apps", scope, params, list(apps))

    async def fetch_keys(self, scope, params, session):
        keys = self.keys
        if scope.level == ScopeLevel.APP:
            keys = [key for key in keys if key["app_id"] == scope.app_id]
        elif scope.level == ScopeLevel.KEYSET:
            keys = [key for key in keys if key["id"] == scope.key_id]
        return await self._respond("keys", scope, params, list(keys))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_source():
    return FakeDataSource()


@pytest.fixture
def session():
    return Session(token="test-token", user_id=1, account_id=7)


@pytest.fixture
def orchestrator(data_source, session, clock):
    return FetchOrchestrator(data_source, session=session, clock=clock, debug=False)


@pytest.fixture
def january():
    return FetchParams("2024-01-01", "2024-01-31")
