"""
crm_sync/services/watermark_resolver.py

Reads the current sync watermark from the target system.
"""

from __future__ import annotations

import logging

from crm_sync.connectors.zoho_crm import ZohoCrmConnector
from crm_sync.domain.entities import TargetEntity
from crm_sync.domain.records import parse_revision
from crm_sync.errors import SyncError

logger = logging.getLogger(__name__)


class WatermarkResolver:
    """
    Highest revision already stored in the target, queried every run.

    Any failure resolves to 0 (fail-open): the next fetch then covers every
    source record, and idempotent upserts make the reprocessing harmless.
    """

    def __init__(self, *, client: ZohoCrmConnector) -> None:
        self._client = client

    def max_revision(self, entity: TargetEntity) -> int:
        try:
            response = self._client.top_record(entity.module, entity.revision_field)
        except SyncError as exc:
            logger.warning(
                "Watermark query failed module=%s error=%s; falling back to 0",
                entity.module,
                exc,
            )
            return 0

        # Zoho answers 204 with no body when the module is empty.
        if response.status_code == 204:
            return 0
        if response.status_code != 200:
            logger.warning(
                "Watermark query failed module=%s status=%s body=%s; falling back to 0",
                entity.module,
                response.status_code,
                self._client.body_preview(response),
            )
            return 0

        payload = self._client.parse_json(response)
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            return 0

        revision = parse_revision(rows[0].get(entity.revision_field))
        if revision is None or revision < 0:
            logger.warning(
                "Watermark value not numeric module=%s value=%r; falling back to 0",
                entity.module,
                rows[0].get(entity.revision_field),
            )
            return 0
        return revision
