"""
crm_sync/services/sync_orchestrator.py

State machine driving one incremental sync run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from crm_sync.auth.token_cache import TokenCache
from crm_sync.config import SyncRunSettings
from crm_sync.connectors.galaxy import GalaxyConnector
from crm_sync.domain.entities import SourceEntity, TargetEntity
from crm_sync.domain.records import SourceRecord
from crm_sync.domain.sync_run import RunSummary, SyncStage
from crm_sync.errors import (
    SourceAuthError,
    SourceHttpError,
    SourceNetworkError,
    SourceResponseError,
    SyncError,
)
from crm_sync.logging_utils import LoggingEventEmitter, SyncEventEmitter
from crm_sync.mappers.accounts import AFFILIATE_FIELD, CUSTOMER_MAPPING
from crm_sync.mappers.field_table import EntityMapping, map_records
from crm_sync.services.batch_upserter import BatchUpserter
from crm_sync.services.relationship_resolver import LinkResult, RelationshipResolver
from crm_sync.services.watermark_resolver import WatermarkResolver

logger = logging.getLogger(__name__)

_MAX_ERROR_SAMPLES = 5


class _RunFailed(Exception):
    """
    Internal signal carrying the terminal stage tag of a failed run.
    """

    def __init__(self, stage: str, error: BaseException) -> None:
        super().__init__(stage)
        self.stage = stage
        self.error = error


class SyncOrchestrator:
    """
    Runs INIT -> AUTH -> WATERMARK -> FETCH_PRIMARY -> SLICE ->
    RESOLVE_SECONDARY -> UPSERT_SECONDARY -> UPSERT_PRIMARY -> DONE.

    Every run ends in a `RunSummary`; per-run failures never raise. A failed
    run is not retried here, the next scheduled run picks up from the
    watermark stored in the target.
    """

    def __init__(
        self,
        *,
        token_cache: TokenCache,
        source: GalaxyConnector,
        watermark_resolver: WatermarkResolver,
        resolver: RelationshipResolver,
        upserter: BatchUpserter,
        primary_source_entity: SourceEntity,
        primary_target_entity: TargetEntity,
        primary_mapping: EntityMapping = CUSTOMER_MAPPING,
        link_field: str = AFFILIATE_FIELD,
        run_settings: SyncRunSettings | None = None,
        emitter: SyncEventEmitter | None = None,
    ) -> None:
        self._token_cache = token_cache
        self._source = source
        self._watermark_resolver = watermark_resolver
        self._resolver = resolver
        self._upserter = upserter
        self._primary_source_entity = primary_source_entity
        self._primary_target_entity = primary_target_entity
        self._primary_mapping = primary_mapping
        self._link_field = link_field
        self._run_settings = run_settings or SyncRunSettings()
        self._emitter = emitter or LoggingEventEmitter(verbose=self._run_settings.verbose)

    def run(
        self,
        *,
        full_resync: bool | None = None,
        watermark_override: int | None = None,
        dev_limit: int | None = None,
    ) -> RunSummary:
        """
        Execute one run. Arguments left as None fall back to the run settings.
        """

        settings = self._run_settings
        full_resync = settings.full_resync if full_resync is None else full_resync
        if watermark_override is None:
            watermark_override = settings.watermark_override
        dev_limit = settings.dev_limit if dev_limit is None else dev_limit

        summary = RunSummary()
        self._enter(summary, SyncStage.INIT)
        try:
            self._execute(summary, full_resync=full_resync, watermark_override=watermark_override, dev_limit=dev_limit)
        except _RunFailed as failure:
            self._fail(summary, failure.stage, failure.error)
        except Exception as exc:  # noqa: BLE001
            stage = summary.states[-1].lower() if summary.states else SyncStage.INIT.value.lower()
            logger.exception("Unexpected error during sync stage=%s", stage)
            self._fail(summary, stage, exc)

        summary.finished_at = datetime.now(timezone.utc)
        self._emitter.emit("sync.finished", **_summary_fields(summary))
        return summary

    def _execute(
        self,
        summary: RunSummary,
        *,
        full_resync: bool,
        watermark_override: int | None,
        dev_limit: int,
    ) -> None:
        self._enter(summary, SyncStage.AUTH)
        try:
            self._token_cache.get_session_id()
        except SyncError as exc:
            raise _RunFailed("auth", exc) from exc

        self._enter(summary, SyncStage.WATERMARK)
        if full_resync:
            watermark = 0
            logger.info("Full resync requested; watermark forced to 0")
        elif watermark_override is not None:
            watermark = watermark_override
            logger.info("Using watermark override=%s", watermark)
        else:
            watermark = self._watermark_resolver.max_revision(self._primary_target_entity)
        summary.watermark = watermark
        self._emitter.emit("sync.watermark", watermark=watermark, full_resync=full_resync)

        self._enter(summary, SyncStage.FETCH_PRIMARY)
        primaries = self._fetch_primaries(summary, watermark)
        if not primaries:
            logger.info("No new %s records above watermark=%s", self._primary_source_entity.name, watermark)
            self._finish(summary)
            return

        self._enter(summary, SyncStage.SLICE)
        if dev_limit and dev_limit > 0 and len(primaries) > dev_limit:
            logger.info("Development limit active: %d of %d records", dev_limit, len(primaries))
            primaries = primaries[:dev_limit]
        summary.processed = len(primaries)

        links = self._resolve_links(summary, primaries)

        self._enter(summary, SyncStage.UPSERT_PRIMARY)
        self._upsert_primaries(summary, primaries, links)
        self._finish(summary)

    def _fetch_primaries(self, summary: RunSummary, watermark: int) -> list[SourceRecord]:
        entity = self._primary_source_entity
        try:
            return self._source.fetch_since(entity, watermark)
        except SourceAuthError as exc:
            logger.warning("Source session rejected (HTTP %s); re-authenticating once", exc.status_code)
            first_error: SyncError = exc
        except SourceNetworkError as exc:
            raise _RunFailed("fetch:first", exc) from exc
        except SourceHttpError as exc:
            raise _RunFailed("fetch:http", exc) from exc
        except SourceResponseError as exc:
            raise _RunFailed("fetch:bad-response", exc) from exc

        self._enter(summary, SyncStage.AUTH_RETRY)
        self._emitter.warning("sync.auth_retry", status_code=getattr(first_error, "status_code", None))
        self._token_cache.invalidate()
        try:
            self._token_cache.refresh_session()
        except SyncError as exc:
            raise _RunFailed("auth:reauth", exc) from exc

        try:
            return self._source.fetch_since(entity, watermark)
        except SyncError as exc:
            raise _RunFailed("fetch:reauth", exc) from exc

    def _resolve_links(self, summary: RunSummary, primaries: list[SourceRecord]) -> dict[Any, str]:
        self._enter(summary, SyncStage.RESOLVE_SECONDARY)
        try:
            plan = self._resolver.plan(primaries)
            self._enter(summary, SyncStage.UPSERT_SECONDARY)
            result: LinkResult = self._resolver.link(plan)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Relationship resolution failed; continuing without links")
            self._emitter.warning("sync.links_failed", error=str(exc))
            return {}

        summary.secondary_success = result.secondary_success
        summary.secondary_failed = result.secondary_failed
        if result.upsert is not None:
            _merge_errors(summary, result.upsert.error_counts, result.upsert.error_samples)
        return result.links

    def _upsert_primaries(
        self,
        summary: RunSummary,
        primaries: list[SourceRecord],
        links: dict[Any, str],
    ) -> None:
        outcome = map_records(primaries, self._primary_mapping)
        summary.dropped = outcome.dropped
        if outcome.dropped:
            logger.warning(
                "Dropped %d %s record(s) missing mandatory fields: %s",
                outcome.dropped,
                self._primary_mapping.name,
                outcome.missing_counts,
            )

        payloads: list[dict[str, Any]] = []
        for item in outcome.records:
            payload = dict(item.payload)
            key = self._resolver.primary_key(item.source)
            target_id = links.get(key) if key is not None else None
            if target_id:
                payload[self._link_field] = {"id": target_id}
                summary.linked += 1
            payloads.append(payload)

        logger.info(
            "Upserting %d %s record(s), %d linked",
            len(payloads),
            self._primary_target_entity.module,
            summary.linked,
        )
        try:
            result = self._upserter.upsert(
                self._primary_target_entity.module,
                payloads,
                self._primary_target_entity.dedup_field,
            )
        except SyncError as exc:
            raise _RunFailed("upsert:primary", exc) from exc

        summary.success = result.success
        summary.failed = result.failed
        _merge_errors(summary, result.error_counts, result.error_samples)
        if not result.chunk_failures:
            return

        last = result.chunk_failures[-1]
        summary.status_code = last.status_code
        summary.error = last.detail
        # No chunk reached the target at all: token or transport failure.
        if len(result.chunk_failures) == result.chunks and all(
            failure.status_code is None for failure in result.chunk_failures
        ):
            raise _RunFailed("upsert:primary", SyncError(last.detail))

    def _enter(self, summary: RunSummary, stage: SyncStage) -> None:
        summary.states.append(stage.value)
        self._emitter.debug("sync.state", state=stage.value)

    def _finish(self, summary: RunSummary) -> None:
        self._enter(summary, SyncStage.DONE)
        summary.ok = True
        summary.stage = SyncStage.DONE.value.lower()
        logger.info(
            "Sync done processed=%d success=%d failed=%d linked=%d dropped=%d watermark=%s",
            summary.processed,
            summary.success,
            summary.failed,
            summary.linked,
            summary.dropped,
            summary.watermark,
        )

    def _fail(self, summary: RunSummary, stage: str, error: BaseException) -> None:
        summary.states.append(SyncStage.FAILED.value)
        summary.ok = False
        summary.stage = stage
        summary.error = str(error)
        if isinstance(error, SourceHttpError):
            summary.status_code = error.status_code
            summary.status_text = error.reason
            if error.body is not None and len(summary.error_samples) < _MAX_ERROR_SAMPLES:
                summary.error_samples.append({"code": "HTTP_BODY", "message": str(error.body)[:500]})
        else:
            summary.status_code = getattr(error, "status_code", None)
        logger.error("Sync failed stage=%s error=%s", stage, error)


def _merge_errors(summary: RunSummary, counts: dict[str, int], samples: list[dict[str, Any]]) -> None:
    for code, count in counts.items():
        summary.error_counts[code] = summary.error_counts.get(code, 0) + count
    for sample in samples:
        if len(summary.error_samples) >= _MAX_ERROR_SAMPLES:
            break
        summary.error_samples.append(sample)


def _summary_fields(summary: RunSummary) -> dict[str, Any]:
    return {
        "ok": summary.ok,
        "stage": summary.stage,
        "processed": summary.processed,
        "success": summary.success,
        "failed": summary.failed,
        "linked": summary.linked,
        "dropped": summary.dropped,
        "watermark": summary.watermark,
    }
