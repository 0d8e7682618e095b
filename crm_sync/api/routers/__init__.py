"""
crm_sync/api/routers package marker.
"""

from crm_sync.api.routers.sync import router as sync_router

__all__ = ["sync_router"]
