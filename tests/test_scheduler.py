"""
Tests for the debounce scheduler: coalescing, serialization, retries and shutdown.
"""

import threading
import time

import pytest

from ingest.retry import RetryPolicy
from ingest.scheduler import DebounceScheduler
from models.detection_record import IngestOutcome
from snapshot.parser import SnapshotDecodeError


class RecordingIngest:
    """Ingest function that records calls and can fail on demand."""

    def __init__(self, failures=(), delay=0.0, on_call=None):
        self.calls = []
        self.failures = list(failures)
        self.delay = delay
        self.on_call = on_call
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, path):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append(path)
            failure = self.failures.pop(0) if self.failures else None
        try:
            if self.on_call is not None:
                self.on_call(path)
            if self.delay:
                time.sleep(self.delay)
            if failure is not None:
                raise failure
            return IngestOutcome(path=path)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def make_scheduler():
    created = []

    def _make(ingest_fn, debounce_s=0.05, backoff_s=0.05, max_attempts=5):
        scheduler = DebounceScheduler(
            ingest_fn,
            debounce_s=debounce_s,
            retry_policy=RetryPolicy(backoff_s=backoff_s, max_attempts=max_attempts),
        )
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.shutdown(grace_s=2.0)


class TestDebounce:
    """Tests for coalescing bursts of change events."""

    def test_burst_runs_once(self, make_scheduler, wait_for, tmp_path):
        """Several writes within the window produce one run seeing the last write."""
        path = tmp_path / "detections.json"
        seen = []
        ingest = RecordingIngest(on_call=lambda p: seen.append(path.read_text()))
        scheduler = make_scheduler(ingest, debounce_s=0.2)

        for i in range(5):
            path.write_text(f"version {i}")
            scheduler.schedule(str(path))
            time.sleep(0.02)

        assert wait_for(lambda: len(ingest.calls) == 1)
        time.sleep(0.3)
        assert len(ingest.calls) == 1
        assert seen == ["version 4"]

    def test_run_waits_for_quiet_window(self, make_scheduler):
        ingest = RecordingIngest()
        scheduler = make_scheduler(ingest, debounce_s=0.3)

        scheduler.schedule("/data/detections.json")
        time.sleep(0.1)

        assert ingest.calls == []
        assert scheduler.pending_paths == 1

    def test_pending_cleared_after_run(self, make_scheduler, wait_for):
        ingest = RecordingIngest()
        scheduler = make_scheduler(ingest)

        scheduler.schedule("/data/detections.json")

        assert wait_for(lambda: len(ingest.calls) == 1)
        assert wait_for(lambda: scheduler.pending_paths == 0)

    def test_paths_debounced_independently(self, make_scheduler, wait_for):
        ingest = RecordingIngest()
        scheduler = make_scheduler(ingest)

        scheduler.schedule("/data/a.json")
        scheduler.schedule("/data/b.json")

        assert wait_for(lambda: len(ingest.calls) == 2)
        assert sorted(ingest.calls) == ["/data/a.json", "/data/b.json"]

    def test_event_during_run_triggers_another_run(self, make_scheduler, wait_for):
        """A change arriving while a run is executing is not lost."""
        scheduler = None
        path = "/data/detections.json"

        def _on_first_call(p):
            if len(ingest.calls) == 1:
                scheduler.schedule(p)

        ingest = RecordingIngest(on_call=_on_first_call)
        scheduler = make_scheduler(ingest)

        scheduler.schedule(path)

        assert wait_for(lambda: len(ingest.calls) == 2)


class TestSerialization:
    """Tests for the single-worker guarantee."""

    def test_runs_never_overlap(self, make_scheduler, wait_for):
        ingest = RecordingIngest(delay=0.1)
        scheduler = make_scheduler(ingest, debounce_s=0.01)

        for name in ("a", "b", "c"):
            scheduler.schedule(f"/data/{name}.json")
        scheduler.force_now("/data/d.json")

        assert wait_for(lambda: len(ingest.calls) == 4)
        assert wait_for(lambda: ingest.active == 0)
        assert ingest.max_active == 1


class TestRetry:
    """Tests for retry of transient failures."""

    def test_transient_failure_retried_once(self, make_scheduler, wait_for):
        """One transient failure then success: exactly two runs."""
        ingest = RecordingIngest(failures=[OSError("file is locked")])
        scheduler = make_scheduler(ingest, backoff_s=0.05)

        scheduler.schedule("/data/detections.json")

        assert wait_for(lambda: len(ingest.calls) == 2)
        time.sleep(0.2)
        assert len(ingest.calls) == 2
        assert scheduler.stats()["retries"] == 1
        assert scheduler.stats()["last_error"] is None

    def test_decode_failure_not_retried(self, make_scheduler, wait_for):
        ingest = RecordingIngest(failures=[SnapshotDecodeError("bad json")])
        scheduler = make_scheduler(ingest, backoff_s=0.05)

        scheduler.schedule("/data/detections.json")

        assert wait_for(lambda: len(ingest.calls) == 1)
        time.sleep(0.25)
        assert len(ingest.calls) == 1
        assert scheduler.stats()["retries"] == 0
        assert "SnapshotDecodeError" in scheduler.stats()["last_error"]

    def test_retry_cap_honoured(self, make_scheduler, wait_for):
        """A persistent transient failure runs once plus max_attempts retries."""
        ingest = RecordingIngest(failures=[PermissionError("denied")] * 10)
        scheduler = make_scheduler(ingest, backoff_s=0.02, max_attempts=2)

        scheduler.schedule("/data/detections.json")

        assert wait_for(lambda: len(ingest.calls) == 3)
        time.sleep(0.2)
        assert len(ingest.calls) == 3
        assert scheduler.stats()["retries"] == 2

    def test_retry_dropped_when_newer_event_pending(self, make_scheduler, wait_for):
        """A newer change supersedes the retry of an older one."""
        scheduler = None
        path = "/data/detections.json"

        def _on_call(p):
            if len(ingest.calls) == 1:
                scheduler.schedule(p)

        ingest = RecordingIngest(failures=[OSError("locked")], on_call=_on_call)
        scheduler = make_scheduler(ingest, debounce_s=0.3, backoff_s=0.05)

        scheduler.schedule(path)

        assert wait_for(lambda: len(ingest.calls) == 2)
        time.sleep(0.4)
        assert len(ingest.calls) == 2
        assert scheduler.stats()["retries"] == 1


class TestForceNow:
    """Tests for immediate runs."""

    def test_returns_outcome(self, make_scheduler):
        scheduler = make_scheduler(RecordingIngest())

        outcome = scheduler.force_now("/data/detections.json").result(timeout=2)

        assert outcome.path == "/data/detections.json"
        assert scheduler.stats()["runs"] == 1

    def test_propagates_failure_without_retry(self, make_scheduler):
        ingest = RecordingIngest(failures=[OSError("locked")])
        scheduler = make_scheduler(ingest, backoff_s=0.02)

        with pytest.raises(OSError):
            scheduler.force_now("/data/detections.json").result(timeout=2)

        time.sleep(0.1)
        assert len(ingest.calls) == 1


class TestShutdown:
    """Tests for shutdown behaviour."""

    def test_refuses_work_after_shutdown(self, make_scheduler):
        ingest = RecordingIngest()
        scheduler = make_scheduler(ingest)

        assert scheduler.shutdown(grace_s=1.0) is True

        assert scheduler.is_active is False
        assert scheduler.schedule("/data/detections.json") is False
        with pytest.raises(RuntimeError):
            scheduler.force_now("/data/detections.json")

    def test_cancels_pending_debounce(self, make_scheduler):
        ingest = RecordingIngest()
        scheduler = make_scheduler(ingest, debounce_s=0.1)

        scheduler.schedule("/data/detections.json")
        scheduler.shutdown(grace_s=1.0)
        time.sleep(0.2)

        assert ingest.calls == []
        assert scheduler.pending_paths == 0

    def test_waits_for_in_flight_run(self, make_scheduler):
        ingest = RecordingIngest(delay=0.1)
        scheduler = make_scheduler(ingest)

        future = scheduler.force_now("/data/detections.json")
        time.sleep(0.02)

        assert scheduler.shutdown(grace_s=2.0) is True
        assert future.done()

    def test_grace_period_expires(self, make_scheduler):
        release = threading.Event()
        ingest = RecordingIngest(on_call=lambda p: release.wait(2.0))
        scheduler = make_scheduler(ingest)

        scheduler.force_now("/data/detections.json")
        time.sleep(0.02)

        try:
            assert scheduler.shutdown(grace_s=0.1) is False
        finally:
            release.set()

    def test_no_retry_armed_after_shutdown(self, make_scheduler, wait_for):
        release = threading.Event()
        ingest = RecordingIngest(
            failures=[OSError("locked")],
            on_call=lambda p: release.wait(2.0),
        )
        scheduler = make_scheduler(ingest, debounce_s=0.01, backoff_s=0.01)

        scheduler.schedule("/data/detections.json")
        assert wait_for(lambda: len(ingest.calls) == 1)
        scheduler.shutdown(grace_s=0.0)
        release.set()
        time.sleep(0.2)

        assert len(ingest.calls) == 1
        assert scheduler.stats()["retries"] == 0
