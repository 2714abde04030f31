"""
Debounced, single-worker scheduling of ingest runs.

Writers often rewrite the snapshot in several steps (truncate, then append),
producing a burst of change notifications. The scheduler coalesces each burst
into one ingest run per path, fired once the path has been quiet for the
debounce window, and runs every ingest on a single worker thread so no two
runs ever overlap.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set

from ingest.retry import RetryPolicy
from models.detection_record import IngestOutcome

IngestFn = Callable[[str], IngestOutcome]


@dataclass(frozen=True)
class PendingTask:
    """Most recent event seen for a path during its debounce window."""
    path: str
    last_event_ts: int


class DebounceScheduler:
    """
    Coalesces change notifications into delayed ingest runs.

    - schedule(path): (re)arms the debounce window for `path`. Only the task
      armed by the last event of a burst runs; earlier ones see a newer
      timestamp and discard themselves.
    - force_now(path): runs immediately (still on the single worker).
    - Retryable failures of debounced runs are re-armed after a fixed
      backoff, up to the policy's cap.

    Example:
        scheduler = DebounceScheduler(ingestor.ingest, debounce_s=1.0)
        scheduler.schedule("/data/detections.json")
        ...
        scheduler.shutdown(grace_s=10.0)
    """

    def __init__(
        self,
        ingest_fn: IngestFn,
        debounce_s: float = 1.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        if debounce_s < 0:
            raise ValueError("debounce_s must be non-negative")
        self._ingest_fn = ingest_fn
        self.debounce_s = debounce_s
        self.retry_policy = retry_policy or RetryPolicy()

        self._lock = threading.RLock()
        self._pending: Dict[str, PendingTask] = {}
        self._timers: Set[threading.Timer] = set()
        self._futures: Set[Future] = set()
        self._accepting = True
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snapshot-ingest")

        # Observability
        self._running = 0
        self._runs = 0
        self._retries = 0
        self._last_outcome: Optional[IngestOutcome] = None
        self._last_error: Optional[str] = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def schedule(self, path: str) -> bool:
        """
        Record a change event for `path` and arm its debounce window.

        Returns:
            False if the scheduler has been shut down.
        """
        with self._lock:
            if not self._accepting:
                logging.debug(f"Scheduler stopped, ignoring change for {path}")
                return False
            stamp = time.monotonic_ns()
            previous = self._pending.get(path)
            if previous is not None and stamp <= previous.last_event_ts:
                stamp = previous.last_event_ts + 1
            self._pending[path] = PendingTask(path, stamp)
            self._arm(self.debounce_s, self._run_debounced, path, stamp)
        logging.debug(f"Scheduled ingest for {path} in {self.debounce_s}s")
        return True

    def force_now(self, path: str) -> Future:
        """
        Run an ingest for `path` immediately, bypassing debounce.

        Returns:
            Future resolving to the IngestOutcome, or raising the ingest error.

        Raises:
            RuntimeError: If the scheduler has been shut down.
        """
        with self._lock:
            if not self._accepting:
                raise RuntimeError("Scheduler is shut down")
            future = self._executor.submit(self._run_forced, path)
            self._track(future)
        return future

    @property
    def pending_paths(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._accepting

    def stats(self) -> Dict[str, object]:
        """Counters and last results for status reporting."""
        with self._lock:
            return {
                "pending_paths": len(self._pending),
                "executor_active": self._accepting,
                "in_flight": self._running > 0,
                "runs": self._runs,
                "retries": self._retries,
                "last_outcome": self._last_outcome.to_dict() if self._last_outcome else None,
                "last_error": self._last_error,
            }

    def shutdown(self, grace_s: float = 10.0) -> bool:
        """
        Stop accepting work and wait for the in-flight ingest.

        Armed timers are cancelled, pending state is dropped and queued runs
        are cancelled. An ingest that is already running cannot be
        interrupted; it is given `grace_s` seconds to finish.

        Returns:
            True if nothing was still running when the call returned.
        """
        with self._lock:
            if not self._accepting:
                return not self._futures
            self._accepting = False
            timers = list(self._timers)
            self._timers.clear()
            self._pending.clear()
            futures = list(self._futures)

        for timer in timers:
            timer.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)

        _, not_done = wait(futures, timeout=grace_s)
        if not_done:
            logging.warning(
                f"Ingest still running after {grace_s}s shutdown grace period, abandoning it"
            )
            return False
        logging.info("Ingest scheduler stopped")
        return True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _arm(self, delay: float, fn: Callable, *args) -> None:
        """Start a timer that submits fn(*args) to the worker. Caller holds the lock."""
        timer = threading.Timer(delay, lambda: self._submit(timer, fn, *args))
        timer.daemon = True
        self._timers.add(timer)
        timer.start()

    def _submit(self, timer: threading.Timer, fn: Callable, *args) -> None:
        with self._lock:
            self._timers.discard(timer)
            if not self._accepting:
                return
            future = self._executor.submit(fn, *args)
            self._track(future)

    def _track(self, future: Future) -> None:
        """Caller holds the lock."""
        self._futures.add(future)
        future.add_done_callback(self._untrack)

    def _untrack(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _is_current(self, path: str, stamp: int) -> bool:
        with self._lock:
            task = self._pending.get(path)
            return task is not None and task.last_event_ts == stamp

    def _run_debounced(self, path: str, stamp: int) -> None:
        if not self._is_current(path, stamp):
            logging.debug(f"Discarding superseded ingest for {path}")
            return
        try:
            self._attempt(path, attempt=0)
        finally:
            with self._lock:
                task = self._pending.get(path)
                if task is not None and task.last_event_ts == stamp:
                    del self._pending[path]

    def _run_retry(self, path: str, attempt: int) -> None:
        with self._lock:
            superseded = path in self._pending
        if superseded:
            logging.info(f"Dropping retry for {path}, a newer change is pending")
            return
        self._attempt(path, attempt)

    def _attempt(self, path: str, attempt: int) -> None:
        try:
            self._execute(path)
        except Exception as e:
            if self.retry_policy.should_retry(e, attempt):
                with self._lock:
                    if not self._accepting:
                        return
                    self._retries += 1
                    self._arm(self.retry_policy.backoff_s, self._run_retry, path, attempt + 1)
                logging.warning(
                    f"Transient ingest failure for {path} "
                    f"(retry {attempt + 1}/{self.retry_policy.max_attempts} "
                    f"in {self.retry_policy.backoff_s}s): {e}"
                )
            elif attempt > 0:
                logging.error(f"Ingest for {path} failed after {attempt} retries: {e}")
            else:
                logging.error(f"Ingest for {path} failed: {e}")

    def _run_forced(self, path: str) -> IngestOutcome:
        logging.info(f"Forced ingest for {path}")
        return self._execute(path)

    def _execute(self, path: str) -> IngestOutcome:
        with self._lock:
            self._running += 1
        try:
            outcome = self._ingest_fn(path)
        except Exception as e:
            with self._lock:
                self._last_error = f"{type(e).__name__}: {e}"
            raise
        else:
            with self._lock:
                self._last_outcome = outcome
                self._last_error = None
            return outcome
        finally:
            with self._lock:
                self._running -= 1
                self._runs += 1
