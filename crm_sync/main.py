"""
crm_sync/main.py

FastAPI entrypoint: manual trigger routes plus the cron scheduler lifecycle.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request

from crm_sync.config import get_debug_enabled, get_scheduler_settings
from crm_sync.logging_utils import configure_logging
from crm_sync.schemas.sync import HealthResponse
from crm_sync.services.sync_service import SyncService, get_sync_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Validate settings and start the scheduler on boot; shut it down on exit."""
    settings = get_scheduler_settings()
    application.state.scheduler = None

    # Fails fast on invalid configuration before serving traffic.
    get_sync_service()
    logger.info("Sync configuration validated")

    if not settings.enabled:
        logger.info("Scheduler disabled (SYNC_SCHEDULER_ENABLED=false)")
        yield
        return

    from crm_sync.scheduler.jobs import build_scheduler

    scheduler = build_scheduler(settings)
    scheduler.start()
    application.state.scheduler = scheduler
    logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    try:
        yield
    finally:
        scheduler.shutdown(wait=True)
        application.state.scheduler = None
        logger.info("Scheduler shut down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    configure_logging(verbose=get_debug_enabled())

    application = FastAPI(
        title="CRM Sync API",
        version="1.0.0",
        lifespan=_lifespan,
    )
    application.state.scheduler = None

    from crm_sync.api.routers import sync_router

    application.include_router(sync_router)

    @application.get("/health", response_model=HealthResponse)
    def healthcheck(
        request: Request,
        sync_service: SyncService = Depends(get_sync_service),
    ) -> HealthResponse:
        scheduler = getattr(request.app.state, "scheduler", None)
        last = sync_service.last_summary
        return HealthResponse(
            status="ok",
            scheduler_running=bool(scheduler is not None and scheduler.running),
            last_run_ok=last.ok if last is not None else None,
        )

    return application


app = create_app()
