"""
crm_sync/connectors/base.py

Shared HTTP mechanics for the source and target connectors.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)


class HTTPConnector:
    """
    Holds a pooled `requests.Session` and a default request timeout.

    Every outbound call carries an explicit timeout.
    """

    name: str = "http"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _timeout(self, override: float | None) -> float:
        return override if override is not None else self._timeout_seconds

    @staticmethod
    def parse_json(response: requests.Response) -> Any:
        """
        Return the decoded JSON body, or None when the body is not JSON.
        """

        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def body_preview(response: requests.Response, limit: int = 500) -> str:
        text = response.text or ""
        return text if len(text) <= limit else text[:limit] + "..."
