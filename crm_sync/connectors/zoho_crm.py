"""
crm_sync/connectors/zoho_crm.py

Zoho CRM REST calls used by the sync: upsert, sorted reads and COQL.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import requests

from crm_sync.auth.token_cache import TokenCache
from crm_sync.config import HTTPSettings, ZohoSettings
from crm_sync.connectors.base import HTTPConnector
from crm_sync.errors import TargetRequestError

logger = logging.getLogger(__name__)


class ZohoCrmConnector(HTTPConnector):
    """
    Target connector; injects the OAuth token and retries once on a 401.
    """

    name = "zoho"

    def __init__(
        self,
        *,
        settings: ZohoSettings,
        http_settings: HTTPSettings,
        token_cache: TokenCache,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(
            base_url=settings.api_url,
            timeout_seconds=http_settings.timeout_seconds,
            session=session,
        )
        self._token_cache = token_cache

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> requests.Response:
        """
        Execute one call and return the raw response without raising on status.
        """

        url = self._url(path)
        for attempt in (1, 2):
            token = self._token_cache.get_token()
            try:
                response = self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_body,
                    headers={
                        "Authorization": f"Zoho-oauthtoken {token}",
                        "Content-Type": "application/json",
                    },
                    timeout=self._timeout_seconds,
                )
            except requests.RequestException as exc:
                logger.error("Zoho request failed method=%s url=%s error=%s", method, url, exc)
                raise TargetRequestError(f"{self.name}: {method} {path} failed: {exc}") from exc

            if response.status_code == 401 and attempt == 1:
                logger.warning("Zoho rejected access token; refreshing and retrying url=%s", url)
                self._token_cache.invalidate_token(token)
                continue
            return response

        raise AssertionError("unreachable")

    def upsert(
        self,
        module: str,
        records: Sequence[dict[str, Any]],
        duplicate_check_field: str,
    ) -> requests.Response:
        return self.request(
            "POST",
            f"/crm/v8/{module}/upsert",
            params={"duplicate_check_fields": duplicate_check_field},
            json_body={"data": list(records)},
        )

    def top_record(self, module: str, sort_field: str) -> requests.Response:
        """
        Read the single record with the highest `sort_field`.

        Uses v2: later API versions cannot sort by custom fields.
        """

        return self.request(
            "GET",
            f"/crm/v2/{module}",
            params={
                "fields": sort_field,
                "sort_by": sort_field,
                "sort_order": "desc",
                "per_page": 1,
                "page": 1,
            },
        )

    def coql(self, query: str) -> requests.Response:
        return self.request("POST", "/crm/v8/coql", json_body={"select_query": query})
