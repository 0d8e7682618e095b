"""
crm_sync/domain/sync_run.py

Run states and the summary returned by every sync run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SyncStage(str, Enum):
    INIT = "INIT"
    AUTH = "AUTH"
    WATERMARK = "WATERMARK"
    FETCH_PRIMARY = "FETCH_PRIMARY"
    AUTH_RETRY = "AUTH_RETRY"
    SLICE = "SLICE"
    RESOLVE_SECONDARY = "RESOLVE_SECONDARY"
    UPSERT_SECONDARY = "UPSERT_SECONDARY"
    UPSERT_PRIMARY = "UPSERT_PRIMARY"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class RunSummary:
    """
    Outcome of one run: counts on success, a terminal stage tag on failure.
    """

    ok: bool = False
    stage: str | None = None
    processed: int = 0
    success: int = 0
    failed: int = 0
    linked: int = 0
    dropped: int = 0
    watermark: int | None = None
    secondary_success: int = 0
    secondary_failed: int = 0
    error: str | None = None
    status_code: int | None = None
    status_text: str | None = None
    error_counts: dict[str, int] = field(default_factory=dict)
    error_samples: list[dict[str, Any]] = field(default_factory=list)
    states: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "stage": self.stage,
            "processed": self.processed,
            "success": self.success,
            "failed": self.failed,
            "linked": self.linked,
            "dropped": self.dropped,
            "watermark": self.watermark,
            "secondary_success": self.secondary_success,
            "secondary_failed": self.secondary_failed,
            "error": self.error,
            "status_code": self.status_code,
            "status_text": self.status_text,
            "error_counts": dict(self.error_counts),
            "error_samples": list(self.error_samples),
            "states": list(self.states),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
