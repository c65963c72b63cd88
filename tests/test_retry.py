"""Tests for the retry controller."""

from __future__ import annotations

import pytest

from conftest import RecordingObserver
from skmirror.exceptions import BackendError, SyncCancelled
from skmirror.storage import CancellationSignal
from skmirror.sync import RetryController


class Flaky:
    """Coroutine factory failing a fixed number of times."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or BackendError("boom")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryController:
    """Tests for RetryController.invoke."""

    def test_negative_count_rejected(self) -> None:
        with pytest.raises(ValueError):
            RetryController(retry_count=-1)

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        op = Flaky(0)
        assert await RetryController(3).invoke(op) == "ok"
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_recovers_within_bound(self) -> None:
        observer = RecordingObserver()
        op = Flaky(2)
        result = await RetryController(2, observer).invoke(op)
        assert result == "ok"
        assert op.calls == 3
        assert [r.attempt for r in observer.errors] == [1, 2]
        assert not any(r.exhausted for r in observer.errors)

    @pytest.mark.asyncio
    async def test_gives_up_after_bound(self) -> None:
        op = Flaky(10)
        with pytest.raises(BackendError, match="boom"):
            await RetryController(3).invoke(op)
        assert op.calls == 4

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self) -> None:
        observer = RecordingObserver()
        op = Flaky(1)
        with pytest.raises(BackendError):
            await RetryController(0, observer).invoke(op)
        assert op.calls == 1
        assert observer.errors == []

    @pytest.mark.asyncio
    async def test_os_errors_are_retried(self) -> None:
        op = Flaky(1, OSError("disk hiccup"))
        assert await RetryController(1).invoke(op) == "ok"

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self) -> None:
        op = Flaky(1, KeyError("bug"))
        with pytest.raises(KeyError):
            await RetryController(3).invoke(op)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_observer_can_cancel(self) -> None:
        class Canceller(RecordingObserver):
            def on_error(self, record) -> None:
                super().on_error(record)
                record.cancel = True

        op = Flaky(5)
        with pytest.raises(SyncCancelled):
            await RetryController(5, Canceller()).invoke(op)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_signal_stops_before_first_attempt(self) -> None:
        cancel = CancellationSignal()
        cancel.cancel()
        op = Flaky(0)
        with pytest.raises(SyncCancelled):
            await RetryController(3, cancel=cancel).invoke(op)
        assert op.calls == 0

    @pytest.mark.asyncio
    async def test_cancellation_is_never_retried(self) -> None:
        op = Flaky(3, SyncCancelled("stop"))
        with pytest.raises(SyncCancelled):
            await RetryController(3).invoke(op)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_failure_after_cancel_reports_cancelled(self) -> None:
        cancel = CancellationSignal()

        async def op() -> None:
            cancel.cancel()
            raise BackendError("connection reset")

        with pytest.raises(SyncCancelled):
            await RetryController(3, cancel=cancel).invoke(op)
