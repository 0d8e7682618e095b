"""
crm_sync/connectors/galaxy.py

Galaxy ERP reads using the raw filter grammar.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from crm_sync.auth.galaxy_auth import SS_PID_COOKIE
from crm_sync.auth.token_cache import TokenCache
from crm_sync.config import GalaxySettings, HTTPSettings
from crm_sync.connectors.base import HTTPConnector
from crm_sync.connectors.filters import FilterOperator, build_raw_filter
from crm_sync.domain.entities import SourceEntity
from crm_sync.domain.records import SourceRecord
from crm_sync.errors import SourceAuthError, SourceHttpError, SourceNetworkError, SourceResponseError

logger = logging.getLogger(__name__)

SESSION_COOKIE = "ss-id"
AUTH_FAILURE_STATUSES = {401, 403}


class GalaxyConnector(HTTPConnector):
    """
    Source fetcher for Galaxy views.

    The filter expression is appended to the path verbatim: Galaxy only
    accepts the unescaped form, so the prepared URL is replaced after
    `requests` has prepared (and would otherwise percent-encode) it.
    """

    name = "galaxy"

    def __init__(
        self,
        *,
        settings: GalaxySettings,
        http_settings: HTTPSettings,
        token_cache: TokenCache,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(
            base_url=settings.base_url,
            timeout_seconds=http_settings.timeout_seconds,
            session=session,
        )
        self._token_cache = token_cache

    def fetch_since(
        self,
        entity: SourceEntity,
        revision: int,
        *,
        inclusive: bool = False,
        timeout_seconds: float | None = None,
    ) -> list[SourceRecord]:
        """
        Fetch records whose revision is above (or at, when inclusive) `revision`.

        A revision of 0 or less fetches everything.
        """

        if revision > 0:
            operator = FilterOperator.GREATER_OR_EQUAL if inclusive else FilterOperator.GREATER
            filters = build_raw_filter(entity.revision_field, int(revision), operator)
            logger.info(
                "Galaxy fetch entity=%s filter=%s %s %s",
                entity.name,
                entity.revision_field,
                ">=" if inclusive else ">",
                revision,
            )
        else:
            filters = None
            logger.info("Galaxy fetch entity=%s filter=none (full fetch)", entity.name)
        return self._fetch(entity, filters, timeout_seconds)

    def fetch_where(
        self,
        entity: SourceEntity,
        field: str,
        value: int | str,
        *,
        operator: FilterOperator = FilterOperator.EQUAL,
        timeout_seconds: float | None = None,
    ) -> list[SourceRecord]:
        """
        Fetch records matching one field condition.
        """

        return self._fetch(entity, build_raw_filter(field, value, operator), timeout_seconds)

    def build_url(self, entity: SourceEntity, filters: str | None) -> str:
        url = self._url(entity.path)
        return f"{url}?filters={filters}" if filters else url

    def _fetch(
        self,
        entity: SourceEntity,
        filters: str | None,
        timeout_seconds: float | None,
    ) -> list[SourceRecord]:
        url = self.build_url(entity, filters)
        prepared = self._session.prepare_request(
            requests.Request("GET", self._url(entity.path), headers=self._headers())
        )
        prepared.url = url
        logger.debug("Galaxy request url=%s", url)

        try:
            response = self._session.send(prepared, timeout=self._timeout(timeout_seconds))
        except requests.RequestException as exc:
            logger.error("Galaxy network failure entity=%s error=%s", entity.name, exc)
            raise SourceNetworkError(f"{self.name}: {entity.name} request failed: {exc}") from exc

        if response.status_code in AUTH_FAILURE_STATUSES:
            raise SourceAuthError(
                f"{self.name}: session rejected (HTTP {response.status_code}).",
                status_code=response.status_code,
                body=self.parse_json(response),
                reason=response.reason,
            )
        if not 200 <= response.status_code < 300:
            body = self.parse_json(response)
            logger.error(
                "Galaxy HTTP failure entity=%s status=%s body=%s",
                entity.name,
                response.status_code,
                body if body is not None else self.body_preview(response),
            )
            raise SourceHttpError(
                f"{self.name}: {entity.name} request failed with HTTP {response.status_code}.",
                status_code=response.status_code,
                body=body if body is not None else self.body_preview(response),
                reason=response.reason,
            )

        payload = self.parse_json(response)
        if payload is None:
            raise SourceResponseError(f"{self.name}: {entity.name} response was not valid JSON.")

        items = _extract_items(payload)
        records = [SourceRecord.from_raw(item, entity) for item in items if isinstance(item, dict)]
        logger.info("Galaxy fetch entity=%s received=%d", entity.name, len(records))
        return records

    def _headers(self) -> dict[str, str]:
        session_id = self._token_cache.get_session_id()
        cookie = f"{SESSION_COOKIE}={session_id}"
        if self._token_cache.ss_pid:
            cookie += f"; {SS_PID_COOKIE}={self._token_cache.ss_pid}"
        return {"Accept": "application/json", "Cookie": cookie}


def _extract_items(payload: Any) -> list[Any]:
    if isinstance(payload, dict):
        items = payload.get("Items")
        return items if isinstance(items, list) else []
    return []
