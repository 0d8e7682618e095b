from __future__ import annotations

import pytest

from crm_sync.errors import SourceHttpError, SourceNetworkError
from crm_sync.retry import NO_RETRY, RetryPolicy, attempt_with_retry


class _Flaky:
    def __init__(self, *outcomes) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class TestRetryPolicy:
    def test_rejects_invalid_budget(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(backoff_seconds=-1)


class TestAttemptWithRetry:
    def test_retries_once_after_fixed_backoff(self) -> None:
        sleeps: list[float] = []
        operation = _Flaky(SourceNetworkError("down"), "ok")

        result = attempt_with_retry(
            operation,
            policy=RetryPolicy(max_attempts=2, backoff_seconds=0.75),
            retry_on=(SourceNetworkError,),
            sleep=sleeps.append,
        )

        assert result == "ok"
        assert operation.calls == 2
        assert sleeps == [0.75]

    def test_raises_last_error_when_budget_exhausted(self) -> None:
        operation = _Flaky(SourceNetworkError("one"), SourceNetworkError("two"))

        with pytest.raises(SourceNetworkError, match="two"):
            attempt_with_retry(
                operation,
                policy=RetryPolicy(max_attempts=2, backoff_seconds=0.0),
                retry_on=(SourceNetworkError,),
                sleep=lambda _: None,
            )
        assert operation.calls == 2

    def test_unlisted_errors_propagate_immediately(self) -> None:
        operation = _Flaky(SourceHttpError("bad", status_code=500), "never")

        with pytest.raises(SourceHttpError):
            attempt_with_retry(
                operation,
                policy=RetryPolicy(max_attempts=3, backoff_seconds=0.0),
                retry_on=(SourceNetworkError,),
                sleep=lambda _: None,
            )
        assert operation.calls == 1

    def test_no_retry_policy_runs_once(self) -> None:
        operation = _Flaky(SourceNetworkError("down"))
        with pytest.raises(SourceNetworkError):
            attempt_with_retry(operation, policy=NO_RETRY, retry_on=(SourceNetworkError,))
        assert operation.calls == 1
