"""
crm_sync/auth/session_store.py

On-disk persistence of the Galaxy session identifiers.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSET = object()


class SessionStore:
    """
    Small JSON file holding `{"sessionId": ..., "ssPid": ...}`.

    A missing or unreadable file is treated as an empty session. Write
    failures are logged and never raised.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._session_id: str | None = None
        self._ss_pid: str | None = None
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def ss_pid(self) -> str | None:
        return self._ss_pid

    def _load(self) -> None:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return
        if not isinstance(payload, dict):
            return
        self._session_id = payload.get("sessionId") or None
        self._ss_pid = payload.get("ssPid") or None

    def set_all(self, *, session_id: object = _UNSET, ss_pid: object = _UNSET) -> None:
        """
        Update the given identifiers and persist both.
        """

        if session_id is not _UNSET:
            self._session_id = session_id or None  # type: ignore[assignment]
        if ss_pid is not _UNSET:
            self._ss_pid = ss_pid or None  # type: ignore[assignment]
        self._write()

    def seed_ss_pid(self, ss_pid: str | None) -> None:
        """
        Use a configured ss-pid cookie only when none has been stored yet.
        """

        if ss_pid and not self._ss_pid:
            self.set_all(ss_pid=ss_pid)

    def clear(self) -> None:
        self.set_all(session_id=None, ss_pid=None)

    def _write(self) -> None:
        payload = {"sessionId": self._session_id, "ssPid": self._ss_pid}
        try:
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not persist session file path=%s error=%s", self._path, exc)
