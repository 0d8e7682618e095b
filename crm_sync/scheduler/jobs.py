"""
crm_sync/scheduler/jobs.py

APScheduler-based periodic sync.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.

A run never overlaps the previous one: the job allows a single running
instance and coalesces missed fire times.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from crm_sync.config import SchedulerSettings, get_scheduler_settings
from crm_sync.services.sync_service import SyncService, get_sync_service

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "crm_sync"


def run_scheduled_sync(service_factory: Callable[[], SyncService] = get_sync_service) -> None:
    """
    Execute one sync run from the scheduler thread.
    """
    logger.info("Scheduler: crm_sync starting")
    try:
        summary = service_factory().run_once()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Scheduler: crm_sync crashed: %s", exc)
        return

    if summary.ok:
        logger.info(
            "Scheduler: crm_sync complete processed=%d success=%d failed=%d",
            summary.processed,
            summary.success,
            summary.failed,
        )
    else:
        logger.warning("Scheduler: crm_sync failed stage=%s error=%s", summary.stage, summary.error)


def build_scheduler(
    settings: SchedulerSettings | None = None,
    *,
    job: Callable[[], None] = run_scheduled_sync,
) -> BackgroundScheduler:
    """
    Build the scheduler with the sync job registered.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points.
    """
    settings = settings or get_scheduler_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        job,
        trigger=CronTrigger.from_crontab(settings.cron, timezone="UTC"),
        id=SYNC_JOB_ID,
        name="Galaxy to Zoho accounts sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
    )
    logger.info("Scheduler: crm_sync registered cron=%r", settings.cron)
    return scheduler
