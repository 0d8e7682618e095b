"""
crm_sync/auth/token_cache.py

Process-lifetime credential cache for both systems.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from crm_sync.auth.session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    """
    Target OAuth access token with its absolute expiry (epoch seconds).
    """

    value: str
    expires_at: float

    def is_fresh(self, *, now: float, margin_seconds: float) -> bool:
        return now < self.expires_at - margin_seconds


@dataclass(frozen=True)
class SourceSession:
    """
    Source session id plus the persistent `ss-pid` cookie that accompanies it.
    """

    session_id: str
    ss_pid: str | None = None


class TokenCache:
    """
    Caches the target access token and the source session id.

    Refreshes are serialized: concurrent callers needing a refresh wait on
    the same lock and reuse the credential the first caller obtained.
    Readers take an immutable snapshot without locking.
    """

    def __init__(
        self,
        *,
        token_provider: Callable[[], AccessToken],
        session_authenticator: Callable[[str | None], SourceSession],
        session_store: SessionStore | None = None,
        refresh_margin_seconds: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._token_provider = token_provider
        self._session_authenticator = session_authenticator
        self._session_store = session_store
        self._refresh_margin_seconds = max(0.0, refresh_margin_seconds)
        self._clock = clock
        self._token: AccessToken | None = None
        self._token_lock = threading.Lock()
        self._session_lock = threading.Lock()
        self._session_id: str | None = session_store.session_id if session_store else None
        self._ss_pid: str | None = session_store.ss_pid if session_store else None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def ss_pid(self) -> str | None:
        return self._ss_pid

    def get_token(self) -> str:
        """
        Return a valid access token, refreshing when missing or about to expire.
        """

        token = self._token
        if token is not None and token.is_fresh(now=self._clock(), margin_seconds=self._refresh_margin_seconds):
            return token.value

        with self._token_lock:
            token = self._token
            if token is not None and token.is_fresh(
                now=self._clock(), margin_seconds=self._refresh_margin_seconds
            ):
                return token.value
            fresh = self._token_provider()
            self._token = fresh
            logger.info("Access token refreshed expires_in=%.0fs", fresh.expires_at - self._clock())
            return fresh.value

    def invalidate_token(self, stale_value: str | None = None) -> None:
        """
        Drop the cached access token, unless another caller already replaced it.
        """

        with self._token_lock:
            if stale_value is None or (self._token is not None and self._token.value == stale_value):
                self._token = None

    def get_session_id(self) -> str:
        """
        Return the cached source session id, authenticating when none exists.
        """

        session_id = self._session_id
        if session_id:
            return session_id
        with self._session_lock:
            if self._session_id:
                return self._session_id
            return self._authenticate_locked()

    def refresh_session(self) -> str:
        """
        Discard the current session and authenticate again.
        """

        with self._session_lock:
            self._clear_session_locked()
            return self._authenticate_locked()

    def invalidate(self) -> None:
        """
        Clear the session credential after the source rejected it.
        """

        with self._session_lock:
            self._clear_session_locked()

    def _clear_session_locked(self) -> None:
        self._session_id = None
        if self._session_store is not None:
            self._session_store.set_all(session_id=None)

    def _authenticate_locked(self) -> str:
        session = self._session_authenticator(self._ss_pid)
        self._session_id = session.session_id
        self._ss_pid = session.ss_pid or self._ss_pid
        if self._session_store is not None:
            self._session_store.set_all(session_id=self._session_id, ss_pid=self._ss_pid)
        logger.info("Source session stored ss_pid_present=%s", bool(self._ss_pid))
        return session.session_id
