"""
crm_sync/auth/zoho_oauth.py

Zoho OAuth refresh-token exchange.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import requests

from crm_sync.auth.token_cache import AccessToken
from crm_sync.config import HTTPSettings, ZohoSettings
from crm_sync.errors import AuthenticationError, TargetRequestError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 3600


class ZohoOAuthClient:
    """
    Obtains short-lived access tokens from a long-lived refresh token.
    """

    def __init__(
        self,
        *,
        settings: ZohoSettings,
        http_settings: HTTPSettings,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._timeout_seconds = http_settings.timeout_seconds
        self._session = session or requests.Session()
        self._clock = clock

    def __call__(self) -> AccessToken:
        return self.refresh_access_token()

    def refresh_access_token(self) -> AccessToken:
        if not self._settings.client_id or not self._settings.client_secret or not self._settings.refresh_token:
            raise AuthenticationError(
                "Missing Zoho OAuth env: ZOHO_CLIENT_ID, ZOHO_CLIENT_SECRET, ZOHO_REFRESH_TOKEN"
            )

        url = f"{self._settings.accounts_url}/oauth/v2/token"
        requested_at = self._clock()
        try:
            response = self._session.post(
                url,
                params={
                    "grant_type": "refresh_token",
                    "refresh_token": self._settings.refresh_token,
                    "client_id": self._settings.client_id,
                    "client_secret": self._settings.client_secret,
                },
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            raise TargetRequestError(f"Zoho OAuth request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if response.status_code != 200 or not access_token:
            logger.error("Zoho OAuth failed status=%s body=%s", response.status_code, payload)
            raise AuthenticationError(
                f"Zoho OAuth failed: HTTP {response.status_code} {response.reason or ''}".strip(),
                status_code=response.status_code,
            )

        try:
            expires_in = float(payload.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS)
        except (TypeError, ValueError):
            expires_in = float(DEFAULT_EXPIRES_IN_SECONDS)
        return AccessToken(value=str(access_token), expires_at=requested_at + expires_in)
