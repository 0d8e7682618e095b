"""
crm_sync/domain/upsert.py

Outcome models for batched upserts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SUCCESS = "success"
ERROR = "error"


@dataclass(frozen=True)
class UpsertRecordResult:
    """
    Result for one submitted record, aligned with the record it came from.
    """

    status: str
    dedup_value: Any = None
    target_id: str | None = None
    action: str | None = None
    code: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS


@dataclass(frozen=True)
class ChunkFailure:
    """
    Transport-level failure of a whole chunk; no per-record detail exists.
    """

    chunk_index: int
    records: int
    status_code: int | None
    detail: str


@dataclass
class UpsertBatchResult:
    """
    Aggregate result of one `BatchUpserter.upsert` call.
    """

    submitted: int = 0
    success: int = 0
    failed: int = 0
    chunks: int = 0
    results: list[UpsertRecordResult] = field(default_factory=list)
    error_counts: dict[str, int] = field(default_factory=dict)
    error_samples: list[dict[str, Any]] = field(default_factory=list)
    chunk_failures: list[ChunkFailure] = field(default_factory=list)

    def target_ids_by_dedup_value(self) -> dict[Any, str]:
        """
        Map each successfully upserted dedup value to its returned target id.
        """

        return {
            result.dedup_value: result.target_id
            for result in self.results
            if result.ok and result.dedup_value is not None and result.target_id
        }
