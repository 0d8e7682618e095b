"""
crm_sync/services/batch_upserter.py

Chunked upserts into Zoho CRM with per-record outcome aggregation.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import ValidationError

from crm_sync.config import ZOHO_MAX_RECORDS_PER_CALL
from crm_sync.connectors.zoho_crm import ZohoCrmConnector
from crm_sync.domain.upsert import ERROR, SUCCESS, ChunkFailure, UpsertBatchResult, UpsertRecordResult
from crm_sync.errors import SyncError
from crm_sync.logging_utils import LoggingEventEmitter, SyncEventEmitter
from crm_sync.schemas.sync import UpsertResultRow

logger = logging.getLogger(__name__)

T = TypeVar("T")

ERROR_SAMPLE_SIZE = 5


def chunk_records(records: Sequence[T], size: int) -> list[list[T]]:
    """
    Split records into consecutive groups of at most `size`.
    """

    step = max(1, size)
    return [list(records[start : start + step]) for start in range(0, len(records), step)]


@dataclass
class _ChunkOutcome:
    index: int
    submitted: int
    results: list[UpsertRecordResult] = field(default_factory=list)
    failure: ChunkFailure | None = None


class BatchUpserter:
    """
    Submits records in bounded chunks, optionally on a small worker pool.

    Each worker returns its own chunk outcome; outcomes are merged in chunk
    order once every call has completed, so counters are never shared
    between threads.
    """

    def __init__(
        self,
        *,
        client: ZohoCrmConnector,
        chunk_size: int = ZOHO_MAX_RECORDS_PER_CALL,
        max_workers: int = 3,
        error_sample_size: int = ERROR_SAMPLE_SIZE,
        emitter: SyncEventEmitter | None = None,
    ) -> None:
        self._client = client
        self._chunk_size = min(ZOHO_MAX_RECORDS_PER_CALL, max(1, chunk_size))
        self._max_workers = max(1, max_workers)
        self._error_sample_size = max(0, error_sample_size)
        self._emitter = emitter or LoggingEventEmitter()

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def upsert(
        self,
        module: str,
        records: Sequence[dict[str, Any]],
        dedup_field: str,
    ) -> UpsertBatchResult:
        """
        Upsert `records` keyed on `dedup_field` and aggregate the outcome.
        """

        records = list(records)
        result = UpsertBatchResult(submitted=len(records))
        if not records:
            return result

        chunks = chunk_records(records, self._chunk_size)
        result.chunks = len(chunks)
        workers = min(self._max_workers, len(chunks))

        if workers == 1:
            outcomes = [
                self._submit_chunk(module, dedup_field, index, chunk, len(chunks))
                for index, chunk in enumerate(chunks)
            ]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="upsert") as pool:
                futures = [
                    pool.submit(self._submit_chunk, module, dedup_field, index, chunk, len(chunks))
                    for index, chunk in enumerate(chunks)
                ]
                outcomes = [future.result() for future in futures]

        for outcome in outcomes:
            self._merge(result, outcome)

        logger.info(
            "Upsert finished module=%s submitted=%d success=%d failed=%d chunks=%d",
            module,
            result.submitted,
            result.success,
            result.failed,
            result.chunks,
        )
        return result

    def _submit_chunk(
        self,
        module: str,
        dedup_field: str,
        index: int,
        chunk: list[dict[str, Any]],
        total: int,
    ) -> _ChunkOutcome:
        outcome = _ChunkOutcome(index=index, submitted=len(chunk))
        label = f"{index + 1}/{total}"

        try:
            response = self._client.upsert(module, chunk, dedup_field)
        except SyncError as exc:
            logger.warning("Upsert chunk %s module=%s transport failure: %s", label, module, exc)
            outcome.failure = ChunkFailure(
                chunk_index=index,
                records=len(chunk),
                status_code=None,
                detail=str(exc),
            )
            return outcome

        payload = self._client.parse_json(response)
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not 200 <= response.status_code < 300 or not isinstance(rows, list):
            logger.warning(
                "Upsert chunk %s module=%s HTTP %s body=%s",
                label,
                module,
                response.status_code,
                payload if payload is not None else self._client.body_preview(response),
            )
            outcome.failure = ChunkFailure(
                chunk_index=index,
                records=len(chunk),
                status_code=response.status_code,
                detail=str(payload) if payload is not None else self._client.body_preview(response),
            )
            return outcome

        for position, sent in enumerate(chunk):
            dedup_value = sent.get(dedup_field)
            if position >= len(rows):
                outcome.results.append(
                    UpsertRecordResult(
                        status=ERROR,
                        dedup_value=dedup_value,
                        code="MISSING_RESULT",
                        message="No result returned for this record.",
                    )
                )
                continue
            outcome.results.append(_classify_row(rows[position], dedup_value))

        errors = [item for item in outcome.results if not item.ok]
        self._emitter.debug(
            "upsert.chunk",
            module=module,
            chunk=label,
            submitted=len(chunk),
            success=len(chunk) - len(errors),
            failed=len(errors),
        )
        if errors:
            tally: dict[str, int] = {}
            for item in errors:
                tally[item.code or "UNKNOWN"] = tally.get(item.code or "UNKNOWN", 0) + 1
            logger.warning("Upsert chunk %s module=%s errors by code: %s", label, module, tally)
        else:
            logger.info("Upsert chunk %s module=%s all %d records succeeded", label, module, len(chunk))
        return outcome

    def _merge(self, result: UpsertBatchResult, outcome: _ChunkOutcome) -> None:
        if outcome.failure is not None:
            result.failed += outcome.failure.records
            result.chunk_failures.append(outcome.failure)
            return

        for item in outcome.results:
            result.results.append(item)
            if item.ok:
                result.success += 1
                continue
            result.failed += 1
            code = item.code or "UNKNOWN"
            result.error_counts[code] = result.error_counts.get(code, 0) + 1
            if len(result.error_samples) < self._error_sample_size:
                result.error_samples.append(
                    {"code": code, "message": item.message or "", "dedup_value": item.dedup_value}
                )


def _classify_row(row: Any, dedup_value: Any) -> UpsertRecordResult:
    try:
        parsed = UpsertResultRow.model_validate(row)
    except ValidationError:
        return UpsertRecordResult(
            status=ERROR,
            dedup_value=dedup_value,
            code="MALFORMED_RESULT",
            message=f"Unparsable result row: {row!r}"[:300],
        )

    if parsed.status == SUCCESS:
        return UpsertRecordResult(
            status=SUCCESS,
            dedup_value=dedup_value,
            target_id=parsed.target_id,
            action=parsed.action,
        )
    return UpsertRecordResult(
        status=ERROR,
        dedup_value=dedup_value,
        action=parsed.action,
        code=parsed.code or "UNKNOWN",
        message=parsed.message or "",
    )
