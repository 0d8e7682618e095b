"""
crm_sync/services package marker.
"""

from crm_sync.services.batch_upserter import BatchUpserter
from crm_sync.services.relationship_resolver import (
    LinkResult,
    RelationshipResolver,
    ResolutionPlan,
    RevisionLinkResolver,
    TaxIdLookupResolver,
    TraderIdLinkResolver,
    build_relationship_resolver,
)
from crm_sync.services.sync_orchestrator import SyncOrchestrator
from crm_sync.services.sync_service import SyncService, build_sync_service, get_sync_service
from crm_sync.services.watermark_resolver import WatermarkResolver

__all__ = [
    "BatchUpserter",
    "LinkResult",
    "RelationshipResolver",
    "ResolutionPlan",
    "RevisionLinkResolver",
    "SyncOrchestrator",
    "SyncService",
    "TaxIdLookupResolver",
    "TraderIdLinkResolver",
    "WatermarkResolver",
    "build_relationship_resolver",
    "build_sync_service",
    "get_sync_service",
]
