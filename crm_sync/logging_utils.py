"""
Structured logging helpers and the sync event emitter.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Protocol


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.
    """

    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))


def configure_logging(*, verbose: bool = False) -> None:
    """
    Configure root logging once for the process.
    """

    log_level = "DEBUG" if verbose else os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


class SyncEventEmitter(Protocol):
    def emit(self, event: str, **fields: Any) -> None:
        ...

    def debug(self, event: str, **fields: Any) -> None:
        ...

    def warning(self, event: str, **fields: Any) -> None:
        ...


class LoggingEventEmitter:
    """
    Event emitter writing JSON lines through a stdlib logger.

    Debug events are only written in verbose mode.
    """

    def __init__(self, logger: logging.Logger | None = None, *, verbose: bool = False) -> None:
        self._logger = logger or logging.getLogger("crm_sync.events")
        self._verbose = verbose

    @property
    def verbose(self) -> bool:
        return self._verbose

    def emit(self, event: str, **fields: Any) -> None:
        log_event(self._logger, logging.INFO, event, **fields)

    def debug(self, event: str, **fields: Any) -> None:
        if self._verbose:
            log_event(self._logger, logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        log_event(self._logger, logging.WARNING, event, **fields)
