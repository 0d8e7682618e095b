"""
crm_sync/domain package marker.
"""

from crm_sync.domain.entities import SourceEntity, TargetEntity
from crm_sync.domain.records import SourceRecord, normalize_external_id, parse_revision
from crm_sync.domain.sync_run import RunSummary, SyncStage
from crm_sync.domain.upsert import UpsertBatchResult, UpsertRecordResult

__all__ = [
    "RunSummary",
    "SourceEntity",
    "SourceRecord",
    "SyncStage",
    "TargetEntity",
    "UpsertBatchResult",
    "UpsertRecordResult",
    "normalize_external_id",
    "parse_revision",
]
