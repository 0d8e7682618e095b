"""
crm_sync/schemas package marker.
"""

from crm_sync.schemas.sync import HealthResponse, RunSummaryResponse, SyncRunRequest, UpsertResultRow

__all__ = [
    "HealthResponse",
    "RunSummaryResponse",
    "SyncRunRequest",
    "UpsertResultRow",
]
