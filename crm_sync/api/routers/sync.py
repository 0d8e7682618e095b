"""
crm_sync/api/routers/sync.py

Sync trigger and status HTTP endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, status

from crm_sync.domain.sync_run import RunSummary
from crm_sync.schemas.sync import RunSummaryResponse, SyncRunRequest
from crm_sync.services.sync_service import SyncService, get_sync_service

router = APIRouter(prefix="/sync", tags=["sync"])


def _to_response(summary: RunSummary) -> RunSummaryResponse:
    return RunSummaryResponse(**summary.to_dict())


@router.post("/run", response_model=RunSummaryResponse)
def run_sync(
    request: SyncRunRequest | None = Body(default=None),
    sync_service: SyncService = Depends(get_sync_service),
) -> RunSummaryResponse:
    """
    Run one sync synchronously and return its summary.

    A failed run is still answered with 200; `ok` and `stage` carry the outcome.
    """

    request = request or SyncRunRequest()
    summary = sync_service.run_once(
        full_resync=request.full_resync,
        watermark_override=request.watermark,
        dev_limit=request.limit,
    )
    return _to_response(summary)


@router.get("/last-run", response_model=RunSummaryResponse)
def last_run(
    sync_service: SyncService = Depends(get_sync_service),
) -> RunSummaryResponse:
    """
    Return the summary of the most recent run in this process.
    """

    summary = sync_service.last_summary
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No sync run has completed yet.",
        )
    return _to_response(summary)
