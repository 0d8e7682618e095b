"""
tests/test_batch_upserter.py

Chunking, per-record outcome aggregation and chunk-level failures.
"""

from __future__ import annotations

import pytest
import requests

from crm_sync.connectors.zoho_crm import ZohoCrmConnector
from crm_sync.services.batch_upserter import BatchUpserter, chunk_records
from tests.fakes import (
    FakeTransport,
    FakeZoho,
    http_settings,
    make_response,
    mounted_session,
    static_token_cache,
    zoho_settings,
)


def _client(transport: FakeTransport) -> ZohoCrmConnector:
    return ZohoCrmConnector(
        settings=zoho_settings(),
        http_settings=http_settings(),
        token_cache=static_token_cache(),
        session=mounted_session(transport),
    )


def _records(count: int) -> list[dict]:
    return [{"Trader_ID": f"C{index}", "Account_Name": f"Customer {index}"} for index in range(count)]


@pytest.fixture()
def zoho() -> FakeZoho:
    return FakeZoho()


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class TestChunking:
    def test_chunk_records(self) -> None:
        assert [len(chunk) for chunk in chunk_records(list(range(250)), 100)] == [100, 100, 50]
        assert chunk_records([], 100) == []

    def test_250_records_make_three_calls(self, zoho: FakeZoho) -> None:
        upserter = BatchUpserter(client=_client(FakeTransport(zoho)), chunk_size=100, max_workers=3)

        result = upserter.upsert("Accounts", _records(250), "Trader_ID")

        assert sorted(len(batch) for batch in zoho.upsert_batches) == [50, 100, 100]
        assert result.chunks == 3
        assert result.submitted == result.success == 250
        assert result.failed == 0

    def test_chunk_size_is_capped_at_provider_limit(self, zoho: FakeZoho) -> None:
        upserter = BatchUpserter(client=_client(FakeTransport(zoho)), chunk_size=500, max_workers=1)

        upserter.upsert("Accounts", _records(150), "Trader_ID")

        assert [len(batch) for batch in zoho.upsert_batches] == [100, 50]

    def test_empty_input_makes_no_calls(self, zoho: FakeZoho) -> None:
        transport = FakeTransport(zoho)
        result = BatchUpserter(client=_client(transport)).upsert("Accounts", [], "Trader_ID")
        assert result.submitted == 0
        assert transport.requests == []


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class TestAggregation:
    def test_duplicate_data_scenario(self, zoho: FakeZoho) -> None:
        zoho.reject_codes["C3"] = "DUPLICATE_DATA"
        upserter = BatchUpserter(client=_client(FakeTransport(zoho)))

        result = upserter.upsert("Accounts", _records(5), "Trader_ID")

        assert (result.success, result.failed) == (4, 1)
        assert result.error_counts == {"DUPLICATE_DATA": 1}
        assert result.error_samples[0]["dedup_value"] == "C3"
        assert result.error_samples[0]["code"] == "DUPLICATE_DATA"
        assert "C3" not in result.target_ids_by_dedup_value()
        assert len(result.target_ids_by_dedup_value()) == 4

    def test_success_plus_failed_equals_submitted_across_chunks(self, zoho: FakeZoho) -> None:
        for index in range(0, 230, 7):
            zoho.reject_codes[f"C{index}"] = "INVALID_DATA"
        upserter = BatchUpserter(client=_client(FakeTransport(zoho)), chunk_size=50, max_workers=3)

        result = upserter.upsert("Accounts", _records(230), "Trader_ID")

        assert result.success + result.failed == result.submitted == 230
        assert result.failed == len(range(0, 230, 7))
        assert len(result.error_samples) == 5

    def test_results_keep_chunk_order(self, zoho: FakeZoho) -> None:
        upserter = BatchUpserter(client=_client(FakeTransport(zoho)), chunk_size=10, max_workers=3)

        result = upserter.upsert("Accounts", _records(45), "Trader_ID")

        assert [item.dedup_value for item in result.results] == [f"C{index}" for index in range(45)]

    def test_missing_and_malformed_rows_count_as_failed(self) -> None:
        transport = FakeTransport().queue(
            make_response(
                200,
                json_body={
                    "data": [
                        {"status": "success", "action": "insert", "details": {"id": "9"}},
                        {"unexpected": True},
                    ]
                },
            )
        )

        result = BatchUpserter(client=_client(transport)).upsert("Accounts", _records(3), "Trader_ID")

        assert (result.success, result.failed) == (1, 2)
        assert result.error_counts == {"MALFORMED_RESULT": 1, "MISSING_RESULT": 1}
        assert result.target_ids_by_dedup_value() == {"C0": "9"}

    def test_error_without_code_is_unknown(self) -> None:
        transport = FakeTransport().queue(make_response(200, json_body={"data": [{"status": "error"}]}))

        result = BatchUpserter(client=_client(transport)).upsert("Accounts", _records(1), "Trader_ID")

        assert result.error_counts == {"UNKNOWN": 1}


# ---------------------------------------------------------------------------
# Chunk failures
# ---------------------------------------------------------------------------


class TestChunkFailures:
    def test_http_failure_fails_whole_chunk_only(self) -> None:
        calls = {"count": 0}
        zoho = FakeZoho()

        def handler(request: requests.PreparedRequest):
            calls["count"] += 1
            if calls["count"] == 2:
                return make_response(400, json_body={"code": "INVALID_DATA", "message": "bad body"})
            return zoho(request)

        upserter = BatchUpserter(client=_client(FakeTransport(handler)), chunk_size=100, max_workers=1)

        result = upserter.upsert("Accounts", _records(250), "Trader_ID")

        assert (result.success, result.failed) == (150, 100)
        assert len(result.chunk_failures) == 1
        failure = result.chunk_failures[0]
        assert (failure.chunk_index, failure.records, failure.status_code) == (1, 100, 400)
        assert "INVALID_DATA" in failure.detail

    def test_transport_failure_is_reported_not_raised(self) -> None:
        transport = FakeTransport().queue(requests.ConnectionError("down"))

        result = BatchUpserter(client=_client(transport)).upsert("Accounts", _records(3), "Trader_ID")

        assert (result.success, result.failed) == (0, 3)
        assert result.chunk_failures[0].status_code is None

    def test_broken_body_fails_only_its_chunk(self) -> None:
        calls = {"count": 0}
        zoho = FakeZoho()

        def handler(request: requests.PreparedRequest):
            calls["count"] += 1
            if calls["count"] == 2:
                return requests.exceptions.ChunkedEncodingError("connection broken mid-body")
            return zoho(request)

        upserter = BatchUpserter(client=_client(FakeTransport(handler)), chunk_size=100, max_workers=1)

        result = upserter.upsert("Accounts", _records(250), "Trader_ID")

        assert (result.success, result.failed) == (150, 100)
        assert [failure.chunk_index for failure in result.chunk_failures] == [1]
        assert result.chunk_failures[0].status_code is None

    def test_non_list_data_is_chunk_failure(self) -> None:
        transport = FakeTransport().queue(make_response(200, json_body={"data": {"oops": 1}}))

        result = BatchUpserter(client=_client(transport)).upsert("Accounts", _records(2), "Trader_ID")

        assert result.failed == 2
        assert result.chunk_failures[0].status_code == 200
