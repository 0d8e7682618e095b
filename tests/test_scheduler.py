from __future__ import annotations

import pytest
from apscheduler.triggers.cron import CronTrigger

from crm_sync.config import SchedulerSettings
from crm_sync.domain.sync_run import RunSummary
from crm_sync.scheduler.jobs import SYNC_JOB_ID, build_scheduler, run_scheduled_sync


class TestBuildScheduler:
    def test_registers_single_non_overlapping_job(self) -> None:
        scheduler = build_scheduler(SchedulerSettings(cron="*/15 * * * *"), job=lambda: None)

        jobs = scheduler.get_jobs()

        assert [job.id for job in jobs] == [SYNC_JOB_ID]
        job = jobs[0]
        assert isinstance(job.trigger, CronTrigger)
        assert job.max_instances == 1
        assert job.coalesce is True

    def test_invalid_cron_raises(self) -> None:
        with pytest.raises(ValueError):
            build_scheduler(SchedulerSettings(cron="every minute"), job=lambda: None)


class TestRunScheduledSync:
    def test_runs_service_once(self) -> None:
        runs: list[int] = []

        class Service:
            def run_once(self) -> RunSummary:
                runs.append(1)
                return RunSummary(ok=False, stage="fetch:first", error="down")

        run_scheduled_sync(lambda: Service())

        assert runs == [1]

    def test_factory_errors_are_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        def broken_factory():
            raise RuntimeError("bad config")

        run_scheduled_sync(broken_factory)

        assert "crashed" in caplog.text
