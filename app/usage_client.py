"""
HTTP client for the upstream admin API (usage, apps, keysets).

Implements RemoteDataSource for the fetch orchestrator. Calls are made with
requests on a worker thread so the event loop never blocks.
"""
import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from app.cache import DataScope, FetchParams, ScopeLevel
from app.fetcher import RemoteDataSource, Session
from config.settings import settings

logger = logging.getLogger("usage_client")

USAGE_PATH = "api/v4/services/usage/legacy/usage"
APPS_PATH = "api/apps-simplified"
KEYS_PATH = "api/app/keys"
APPS_PAGE_LIMIT = 1000

# Limit concurrent upstream requests (account-wide key listing fans out per app)
_api_semaphore = threading.Semaphore(10)


class UsageApiClient(RemoteDataSource):
    """
    Remote data source backed by the admin REST API.

    Authentication is the session token, sent as X-Session-Token.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Admin API root (defaults to settings)
            timeout: Per-request timeout in seconds (defaults to settings)
            http: requests.Session to reuse connections with
        """
        self.base_url = (base_url or settings.usage_api_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout_seconds
        self._http = http or requests.Session()

    @retry(
        stop=stop_after_attempt(settings.request_max_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _get(self, path: str, params: Dict[str, Any], token: str) -> Any:
        """
        GET a JSON document, retrying transport failures.

        HTTP error statuses are raised as requests.HTTPError without retry.
        """
        with _api_semaphore:
            response = self._http.get(
                f"{self.base_url}/{path}",
                headers={"X-Session-Token": token},
                params={k: v for k, v in params.items() if v is not None},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()

    async def _get_async(self, path: str, params: Dict[str, Any], token: str) -> Any:
        return await asyncio.to_thread(self._get, path, params, token)

    async def fetch_account_usage(
        self,
        scope: DataScope,
        params: FetchParams,
        session: Session,
    ) -> Dict[str, Any]:
        """
        Usage time series for exactly one scope.

        The upstream aggregates server-side, so each level is its own query.
        """
        query: Dict[str, Any] = {
            "usageType": "transaction",
            "file_format": "json",
            "start": params.start_date,
            "end": params.end_date,
        }
        if scope.level == ScopeLevel.KEYSET:
            query["key_id"] = scope.key_id
        elif scope.level == ScopeLevel.APP:
            query["app_id"] = scope.app_id
        else:
            query["account_id"] = scope.account_id
        query.update(params.filters)

        logger.info(f"Fetching usage for {scope.level.value} {params.start_date}..{params.end_date}")
        data = await self._get_async(USAGE_PATH, query, session.token)
        return data or {}

    async def fetch_apps(self, scope: DataScope, params: FetchParams, session: Session) -> list:
        """Apps owned by the account, narrowed to the scope's app if any."""
        data = await self._get_async(
            APPS_PATH,
            {"owner_id": scope.account_id, "limit": APPS_PAGE_LIMIT, "search": ""},
            session.token,
        )
        apps = _unwrap_list(data)
        if scope.level == ScopeLevel.ACCOUNT:
            return apps
        return [app for app in apps if str(app.get("id")) == str(scope.app_id)]

    async def fetch_keys(self, scope: DataScope, params: FetchParams, session: Session) -> list:
        """
        Keysets visible at a scope.

        Account scope lists every app's keysets; every record is tagged with
        the app_id it belongs to.
        """
        if scope.level == ScopeLevel.ACCOUNT or scope.app_id is None:
            apps = await self.fetch_apps(DataScope.account(scope.account_id), params, session)
            app_ids = [app.get("id") for app in apps]
        else:
            app_ids = [scope.app_id]

        per_app = await asyncio.gather(
            *(self._fetch_keys_for_app(app_id, session) for app_id in app_ids)
        )
        keys = [key for app_keys in per_app for key in app_keys]

        if scope.level == ScopeLevel.KEYSET:
            return [key for key in keys if str(key.get("id")) == str(scope.key_id)]
        return keys

    async def _fetch_keys_for_app(self, app_id: Any, session: Session) -> List[Dict[str, Any]]:
        data = await self._get_async(
            KEYS_PATH,
            {"app_id": app_id, "page": 1, "limit": settings.keys_page_limit},
            session.token,
        )
        keys = _unwrap_list(data)
        for key in keys:
            key.setdefault("app_id", app_id)
        return keys

    def close(self) -> None:
        self._http.close()


def _unwrap_list(data: Any) -> List[Dict[str, Any]]:
    """The admin API wraps lists as {"result": [...]} on some endpoints."""
    if isinstance(data, dict):
        data = data.get("result", data.get("apps", []))
    return data if isinstance(data, list) else []
