"""
crm_sync/schemas/sync.py

Pydantic models for target API rows and the sync HTTP responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UpsertResultRow(BaseModel):
    """
    One per-record entry of a Zoho upsert response.
    """

    model_config = ConfigDict(extra="ignore")

    status: str
    action: str | None = None
    code: str | None = None
    message: str | None = None
    details: Any = None

    @property
    def target_id(self) -> str | None:
        if isinstance(self.details, dict):
            value = self.details.get("id")
            return str(value) if value is not None else None
        return None


class RunSummaryResponse(BaseModel):
    """
    API response model for one sync run.
    """

    ok: bool
    stage: str | None = None
    processed: int = Field(0, ge=0)
    success: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    linked: int = Field(0, ge=0)
    dropped: int = Field(0, ge=0)
    watermark: int | None = None
    secondary_success: int = Field(0, ge=0)
    secondary_failed: int = Field(0, ge=0)
    error: str | None = None
    status_code: int | None = None
    status_text: str | None = None
    error_counts: dict[str, int] = Field(default_factory=dict)
    error_samples: list[dict[str, Any]] = Field(default_factory=list)
    states: list[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime | None = None


class SyncRunRequest(BaseModel):
    """
    Optional per-run overrides accepted by the trigger endpoint.
    """

    full_resync: bool | None = None
    watermark: int | None = Field(default=None, ge=0)
    limit: int | None = Field(default=None, ge=0)


class HealthResponse(BaseModel):
    status: str
    scheduler_running: bool
    last_run_ok: bool | None = None
