"""
crm_sync/services/relationship_resolver.py

Linking strategies between primary records and their secondary (affiliate)
accounts in the target.
"""

from __future__ import annotations

import logging
import queue
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from crm_sync.connectors.filters import FilterOperator
from crm_sync.connectors.galaxy import GalaxyConnector
from crm_sync.connectors.zoho_crm import ZohoCrmConnector
from crm_sync.domain.entities import SourceEntity, TargetEntity
from crm_sync.domain.records import SourceRecord, normalize_external_id
from crm_sync.domain.upsert import UpsertBatchResult
from crm_sync.errors import SourceHttpError, SourceNetworkError, SourceResponseError, SyncError
from crm_sync.logging_utils import LoggingEventEmitter, SyncEventEmitter
from crm_sync.mappers.accounts import AFFILIATE_MAPPING
from crm_sync.mappers.field_table import EntityMapping, map_records, norm_digits
from crm_sync.retry import RetryPolicy, attempt_with_retry
from crm_sync.services.batch_upserter import BatchUpserter, chunk_records

logger = logging.getLogger(__name__)

RETRYABLE_FETCH_ERRORS = (SourceNetworkError, SourceHttpError, SourceResponseError)
COQL_BATCH_SIZE = 250

_FALSE_MARKERS = {"", "0", "false", "no", "n", "off"}


@dataclass
class ResolutionPlan:
    """
    Secondary records selected for linking, keyed by correlation key.
    """

    eligible_keys: frozenset[Hashable] = frozenset()
    secondaries: dict[Hashable, SourceRecord] = field(default_factory=dict)
    fetched: int = 0
    fetch_failed: bool = False


@dataclass
class LinkResult:
    """
    Correlation key -> target id, plus what it took to build it.
    """

    links: dict[Hashable, str] = field(default_factory=dict)
    upsert: UpsertBatchResult | None = None
    dropped: int = 0
    fetch_failed: bool = False

    @property
    def secondary_success(self) -> int:
        return self.upsert.success if self.upsert else 0

    @property
    def secondary_failed(self) -> int:
        return self.upsert.failed if self.upsert else 0


def is_marked(value: Any) -> bool:
    """
    Interpret a source membership marker ("1", "Y", True, ...) as a bool.
    """

    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() not in _FALSE_MARKERS


def dedup_by_external_id(records: Iterable[SourceRecord]) -> list[SourceRecord]:
    """
    Keep one record per external id: the highest revision, first seen on ties.

    Records without an external id are dropped. Output keeps first-seen order.
    """

    best: dict[str, SourceRecord] = {}
    for record in records:
        if record.external_id is None:
            continue
        current = best.get(record.external_id)
        if current is None or _revision_of(record) > _revision_of(current):
            best[record.external_id] = record
    return list(best.values())


def _revision_of(record: SourceRecord) -> int:
    return record.revision if record.revision is not None else -1


class RelationshipResolver(ABC):
    """
    Builds the correlation key -> target id map used to link primaries.

    `plan` selects the secondaries worth linking; `link` makes sure they
    exist in the target and reports their ids. Both are best effort: the
    orchestrator treats any failure here as "no links".
    """

    name = "base"

    def __init__(self, *, emitter: SyncEventEmitter | None = None) -> None:
        self._emitter = emitter or LoggingEventEmitter()

    @abstractmethod
    def primary_key(self, record: SourceRecord) -> Hashable | None:
        """
        Correlation key of a primary record, or None when it cannot be linked.
        """

    @abstractmethod
    def plan(self, primaries: Sequence[SourceRecord]) -> ResolutionPlan:
        ...

    @abstractmethod
    def link(self, plan: ResolutionPlan) -> LinkResult:
        ...

    def resolve(self, primaries: Sequence[SourceRecord]) -> LinkResult:
        return self.link(self.plan(primaries))

    def eligible_keys(self, primaries: Iterable[SourceRecord]) -> frozenset[Hashable]:
        keys = (self.primary_key(record) for record in primaries)
        return frozenset(key for key in keys if key is not None)


class _UpsertingResolver(RelationshipResolver):
    """
    Shared tail for strategies that upsert the selected secondaries first.
    """

    def __init__(
        self,
        *,
        upserter: BatchUpserter,
        target_entity: TargetEntity,
        mapping: EntityMapping = AFFILIATE_MAPPING,
        emitter: SyncEventEmitter | None = None,
    ) -> None:
        super().__init__(emitter=emitter)
        self._upserter = upserter
        self._target_entity = target_entity
        self._mapping = mapping

    def link(self, plan: ResolutionPlan) -> LinkResult:
        result = LinkResult(fetch_failed=plan.fetch_failed)
        if not plan.secondaries:
            return result

        key_by_external_id = {record.external_id: key for key, record in plan.secondaries.items()}
        outcome = map_records(plan.secondaries.values(), self._mapping)
        result.dropped = outcome.dropped
        if outcome.dropped:
            logger.warning(
                "Dropped %d %s record(s) missing mandatory fields: %s",
                outcome.dropped,
                self._mapping.name,
                outcome.missing_counts,
            )

        payloads = [item.payload for item in outcome.records]
        dedup_field = self._target_entity.dedup_field
        result.upsert = self._upserter.upsert(self._target_entity.module, payloads, dedup_field)

        for dedup_value, target_id in result.upsert.target_ids_by_dedup_value().items():
            key = key_by_external_id.get(normalize_external_id(dedup_value))
            if key is not None:
                result.links[key] = target_id

        self._emitter.emit(
            "resolver.linked",
            strategy=self.name,
            secondaries=len(plan.secondaries),
            upserted=result.upsert.success,
            failed=result.upsert.failed,
            links=len(result.links),
        )
        return result


class RevisionLinkResolver(_UpsertingResolver):
    """
    Links primaries to secondaries sharing the same revision number.

    One inclusive fetch from the lowest eligible primary revision covers
    every candidate secondary; a failed fetch degrades to zero links.
    """

    name = "revision"

    def __init__(
        self,
        *,
        source: GalaxyConnector,
        upserter: BatchUpserter,
        secondary_entity: SourceEntity,
        target_entity: TargetEntity,
        mapping: EntityMapping = AFFILIATE_MAPPING,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float = 20.0,
        membership_field: str | None = None,
        sleep: Callable[[float], None] | None = None,
        emitter: SyncEventEmitter | None = None,
    ) -> None:
        super().__init__(upserter=upserter, target_entity=target_entity, mapping=mapping, emitter=emitter)
        self._source = source
        self._secondary_entity = secondary_entity
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=2, backoff_seconds=0.75)
        self._timeout_seconds = timeout_seconds
        self._membership_field = membership_field
        self._sleep = sleep

    def primary_key(self, record: SourceRecord) -> Hashable | None:
        if record.revision is None:
            return None
        if self._membership_field and not is_marked(record.get(self._membership_field)):
            return None
        return record.revision

    def plan(self, primaries: Sequence[SourceRecord]) -> ResolutionPlan:
        keys = self.eligible_keys(primaries)
        plan = ResolutionPlan(eligible_keys=keys)
        if not keys:
            logger.info("No primary records eligible for linking; skipping secondary fetch")
            return plan

        min_revision = min(keys)
        retry_kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        try:
            fetched = attempt_with_retry(
                lambda: self._source.fetch_since(
                    self._secondary_entity,
                    min_revision,
                    inclusive=True,
                    timeout_seconds=self._timeout_seconds,
                ),
                policy=self._retry_policy,
                retry_on=RETRYABLE_FETCH_ERRORS,
                description=f"{self._secondary_entity.name} fetch",
                **retry_kwargs,
            )
        except RETRYABLE_FETCH_ERRORS as exc:
            logger.error(
                "Secondary fetch failed entity=%s min_revision=%s; continuing without links: %s",
                self._secondary_entity.name,
                min_revision,
                exc,
            )
            self._emitter.warning("resolver.fetch_failed", strategy=self.name, error=str(exc))
            plan.fetch_failed = True
            return plan

        plan.fetched = len(fetched)
        unique = dedup_by_external_id(fetched)

        correlation: dict[Hashable, SourceRecord] = {}
        for record in unique:
            if record.revision is None:
                continue
            current = correlation.get(record.revision)
            if current is None or _revision_of(record) > _revision_of(current):
                correlation[record.revision] = record

        plan.secondaries = {key: record for key, record in correlation.items() if key in keys}
        logger.info(
            "Secondary plan entity=%s min_revision=%s fetched=%d unique=%d matched=%d",
            self._secondary_entity.name,
            min_revision,
            len(fetched),
            len(unique),
            len(plan.secondaries),
        )
        return plan


class TraderIdLinkResolver(_UpsertingResolver):
    """
    Links through a secondary trader id carried on each primary record.

    Secondaries are fetched one key at a time on a small worker pool; a
    failed key loses only its own results.
    """

    name = "trader_id"

    def __init__(
        self,
        *,
        source: GalaxyConnector,
        upserter: BatchUpserter,
        secondary_entity: SourceEntity,
        target_entity: TargetEntity,
        reference_field: str = "AFFILIATES_TRDRID",
        mapping: EntityMapping = AFFILIATE_MAPPING,
        max_workers: int = 4,
        timeout_seconds: float = 20.0,
        emitter: SyncEventEmitter | None = None,
    ) -> None:
        super().__init__(upserter=upserter, target_entity=target_entity, mapping=mapping, emitter=emitter)
        self._source = source
        self._secondary_entity = secondary_entity
        self._reference_field = reference_field
        self._max_workers = max(1, max_workers)
        self._timeout_seconds = timeout_seconds

    def primary_key(self, record: SourceRecord) -> Hashable | None:
        return normalize_external_id(record.get(self._reference_field))

    def plan(self, primaries: Sequence[SourceRecord]) -> ResolutionPlan:
        keys = self.eligible_keys(primaries)
        plan = ResolutionPlan(eligible_keys=keys)
        if not keys:
            return plan

        pending: queue.Queue[Hashable] = queue.Queue()
        for key in sorted(keys, key=str):
            pending.put(key)

        collected: list[SourceRecord] = []
        collected_lock = threading.Lock()
        failures: list[Hashable] = []

        def worker() -> None:
            while True:
                try:
                    key = pending.get_nowait()
                except queue.Empty:
                    return
                try:
                    records = self._source.fetch_where(
                        self._secondary_entity,
                        self._secondary_entity.id_field,
                        _filter_value(key),
                        operator=FilterOperator.EQUAL,
                        timeout_seconds=self._timeout_seconds,
                    )
                except SyncError as exc:
                    logger.warning("Secondary lookup failed key=%s: %s", key, exc)
                    with collected_lock:
                        failures.append(key)
                    continue
                with collected_lock:
                    collected.extend(records)

        threads = [
            threading.Thread(target=worker, name=f"link-{index}", daemon=True)
            for index in range(min(self._max_workers, len(keys)))
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        plan.fetched = len(collected)
        plan.fetch_failed = bool(failures) and len(failures) == len(keys)
        unique = dedup_by_external_id(collected)
        plan.secondaries = {record.external_id: record for record in unique if record.external_id in keys}
        logger.info(
            "Secondary plan strategy=%s keys=%d fetched=%d matched=%d failed_keys=%d",
            self.name,
            len(keys),
            len(collected),
            len(plan.secondaries),
            len(failures),
        )
        return plan


class TaxIdLookupResolver(RelationshipResolver):
    """
    Links to accounts already in the target that carry the same tax id.

    Nothing is fetched from the source or upserted; existing target accounts
    are looked up with COQL in batches.
    """

    name = "tax_id"

    def __init__(
        self,
        *,
        client: ZohoCrmConnector,
        reference_field: str = "AFF_TIN",
        module: str = "Accounts",
        tax_field: str = "Account_AFM",
        batch_size: int = COQL_BATCH_SIZE,
        emitter: SyncEventEmitter | None = None,
    ) -> None:
        super().__init__(emitter=emitter)
        self._client = client
        self._reference_field = reference_field
        self._module = module
        self._tax_field = tax_field
        self._batch_size = max(1, batch_size)

    def primary_key(self, record: SourceRecord) -> Hashable | None:
        return norm_digits(record.get(self._reference_field))

    def plan(self, primaries: Sequence[SourceRecord]) -> ResolutionPlan:
        return ResolutionPlan(eligible_keys=self.eligible_keys(primaries))

    def link(self, plan: ResolutionPlan) -> LinkResult:
        result = LinkResult()
        batches = chunk_records(sorted(str(key) for key in plan.eligible_keys), self._batch_size)
        failed_batches = 0
        for batch in batches:
            try:
                found = self._lookup(batch)
            except SyncError as exc:
                logger.warning("Tax id lookup failed batch_size=%d: %s", len(batch), exc)
                failed_batches += 1
                continue
            result.links.update(found)

        result.fetch_failed = bool(batches) and failed_batches == len(batches)
        self._emitter.emit(
            "resolver.linked",
            strategy=self.name,
            keys=len(plan.eligible_keys),
            links=len(result.links),
            failed_batches=failed_batches,
        )
        return result

    def build_query(self, values: Sequence[str]) -> str:
        quoted = ", ".join("'" + value.replace("'", "") + "'" for value in values)
        return f"select id, {self._tax_field} from {self._module} where {self._tax_field} in ({quoted})"

    def _lookup(self, values: Sequence[str]) -> dict[Hashable, str]:
        response = self._client.coql(self.build_query(values))
        # 204 means no matching rows.
        if response.status_code == 204:
            return {}
        payload = self._client.parse_json(response)
        if response.status_code != 200 or not isinstance(payload, dict):
            raise SyncError(
                f"COQL lookup failed with HTTP {response.status_code}: "
                f"{self._client.body_preview(response)}"
            )

        found: dict[Hashable, str] = {}
        for row in payload.get("data") or []:
            if not isinstance(row, dict):
                continue
            key = norm_digits(row.get(self._tax_field))
            target_id = row.get("id")
            if key and target_id and key not in found:
                found[key] = str(target_id)
        return found


def _filter_value(key: Hashable) -> int | str:
    text = str(key)
    return int(text) if text.isdigit() else text


def build_relationship_resolver(
    name: str,
    *,
    source: GalaxyConnector,
    client: ZohoCrmConnector,
    upserter: BatchUpserter,
    secondary_entity: SourceEntity,
    target_entity: TargetEntity,
    retry_policy: RetryPolicy | None = None,
    timeout_seconds: float = 20.0,
    membership_field: str | None = None,
    link_workers: int = 4,
    emitter: SyncEventEmitter | None = None,
) -> RelationshipResolver:
    """
    Create the linking strategy registered under `name`.
    """

    strategy = (name or "").strip().lower()
    if strategy == RevisionLinkResolver.name:
        return RevisionLinkResolver(
            source=source,
            upserter=upserter,
            secondary_entity=secondary_entity,
            target_entity=target_entity,
            retry_policy=retry_policy,
            timeout_seconds=timeout_seconds,
            membership_field=membership_field,
            emitter=emitter,
        )
    if strategy == TraderIdLinkResolver.name:
        return TraderIdLinkResolver(
            source=source,
            upserter=upserter,
            secondary_entity=secondary_entity,
            target_entity=target_entity,
            max_workers=link_workers,
            timeout_seconds=timeout_seconds,
            emitter=emitter,
        )
    if strategy == TaxIdLookupResolver.name:
        return TaxIdLookupResolver(client=client, module=target_entity.module, emitter=emitter)
    raise ValueError(f"Unknown link strategy '{name}'.")
