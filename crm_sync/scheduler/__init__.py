"""
crm_sync/scheduler package marker.
"""

from crm_sync.scheduler.jobs import build_scheduler, run_scheduled_sync

__all__ = ["build_scheduler", "run_scheduled_sync"]
