from __future__ import annotations

import json

import pytest

from crm_sync import config
from crm_sync.domain.sync_run import RunSummary
from scripts import run_sync

_REQUIRED_ENV = {
    "BASE_URL": "http://galaxy.test",
    "AUTH_USERNAME": "svc",
    "AUTH_PASSWORD": "secret",
    "ZOHO_CLIENT_ID": "cid",
    "ZOHO_CLIENT_SECRET": "csecret",
    "ZOHO_REFRESH_TOKEN": "rtoken",
}


class _Service:
    def __init__(self, summary: RunSummary) -> None:
        self._summary = summary

    def run_once(self) -> RunSummary:
        return self._summary


@pytest.fixture(autouse=True)
def env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, "_load_env_once", lambda: None)
    for key, value in _REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)
    for key in ("SYNC_WATERMARK_OVERRIDE", "SYNC_LINK_STRATEGY", "SYNC_CHUNK_SIZE", "DEV_LIMIT", "DEV_ONE_ITEM"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(run_sync, "configure_logging", lambda **kwargs: None)
    config.clear_settings_cache()
    yield
    config.clear_settings_cache()


@pytest.fixture()
def captured(monkeypatch: pytest.MonkeyPatch):
    calls: list[dict] = []
    summary = RunSummary(ok=True, stage="done", processed=2, success=2)

    def fake_build(**kwargs):
        calls.append(kwargs)
        return _Service(summary)

    monkeypatch.setattr(run_sync, "build_sync_service", fake_build)
    return calls, summary


class TestRunSyncCli:
    def test_success_prints_summary_and_exits_zero(self, captured, capsys: pytest.CaptureFixture) -> None:
        exit_code = run_sync.main([])

        assert exit_code == 0
        assert json.loads(capsys.readouterr().out)["processed"] == 2

    def test_flags_override_run_settings(self, captured) -> None:
        calls, _ = captured

        run_sync.main(
            ["--full-resync", "--watermark", "40", "--limit", "5", "--chunk-size", "250", "--strategy", "tax_id"]
        )

        run = calls[0]["run"]
        assert run.full_resync is True
        assert run.watermark_override == 40
        assert run.dev_limit == 5
        assert run.chunk_size == 100
        assert run.link_strategy == "tax_id"

    def test_failed_run_exits_one(self, captured) -> None:
        _, summary = captured
        summary.ok = False
        summary.stage = "fetch:http"

        assert run_sync.main([]) == 1

    def test_bad_watermark_is_configuration_error(self, captured, capsys: pytest.CaptureFixture) -> None:
        assert run_sync.main(["--watermark", "-3"]) == 2
        assert "must not be negative" in capsys.readouterr().err
        assert captured[0] == []

    def test_missing_credentials_exit_two(self, captured, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("AUTH_PASSWORD")
        config.clear_settings_cache()

        assert run_sync.main([]) == 2
