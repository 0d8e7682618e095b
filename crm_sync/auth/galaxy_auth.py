"""
crm_sync/auth/galaxy_auth.py

Cookie-based session login against the Galaxy API.
"""

from __future__ import annotations

import logging
from urllib.parse import urljoin, urlparse

import requests

from crm_sync.auth.token_cache import SourceSession
from crm_sync.config import GalaxySettings, HTTPSettings
from crm_sync.errors import AuthenticationError, SourceNetworkError

logger = logging.getLogger(__name__)

SS_PID_COOKIE = "ss-pid"


class GalaxyAuthenticator:
    """
    Exchanges username/password for a Galaxy `SessionId`.
    """

    def __init__(
        self,
        *,
        settings: GalaxySettings,
        http_settings: HTTPSettings,
        session: requests.Session | None = None,
    ) -> None:
        self._settings = settings
        self._timeout_seconds = http_settings.timeout_seconds
        self._session = session or requests.Session()

    def __call__(self, current_ss_pid: str | None) -> SourceSession:
        return self.authenticate(current_ss_pid)

    def authenticate(self, current_ss_pid: str | None = None) -> SourceSession:
        url = urljoin(self._settings.base_url.rstrip("/") + "/", "auth")
        headers = {
            "Accept": "application/json",
            "Host": urlparse(self._settings.base_url).hostname or "",
        }
        if current_ss_pid:
            headers["Cookie"] = f"{SS_PID_COOKIE}={current_ss_pid}"

        try:
            response = self._session.get(
                url,
                params={"username": self._settings.username, "password": self._settings.password},
                headers=headers,
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            raise SourceNetworkError(f"Galaxy auth request failed: {exc}") from exc

        new_ss_pid = response.cookies.get(SS_PID_COOKIE) or current_ss_pid
        payload = _json_or_none(response)

        if 200 <= response.status_code < 300:
            session_id = payload.get("SessionId") if isinstance(payload, dict) else None
            if not session_id:
                raise AuthenticationError(
                    "Auth succeeded but no SessionId in payload.",
                    status_code=response.status_code,
                )
            logger.info("Galaxy authentication succeeded ss_pid_rotated=%s", new_ss_pid != current_ss_pid)
            return SourceSession(session_id=str(session_id), ss_pid=new_ss_pid)

        message = None
        if isinstance(payload, dict):
            status_block = payload.get("ResponseStatus")
            if isinstance(status_block, dict):
                message = status_block.get("Message")
        message = message or f"HTTP {response.status_code} {response.reason or ''}".strip()
        logger.error("Galaxy authentication failed status=%s message=%s", response.status_code, message)
        raise AuthenticationError(f"Auth failed: {message}", status_code=response.status_code)


def _json_or_none(response: requests.Response) -> object:
    try:
        return response.json()
    except ValueError:
        return None
