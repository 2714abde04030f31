from __future__ import annotations

import logging
import os
from typing import Any, Callable, Optional

from watchdog.observers import Observer

from ingest.ingestor import SnapshotIngestor
from ingest.retry import RetryPolicy
from ingest.scheduler import DebounceScheduler
from models.config import IngestConfig, WatchConfig
from models.detection_record import IngestOutcome
from models.status import SyncStatus
from snapshot.parser import SnapshotParser
from storage.database import DetectionStore
from watch.watcher import DirectoryWatcher


class SnapshotSyncService:
    """
    Keeps the store synchronized with the detections snapshot file.

    Owns the ingestor, the debounce scheduler and the directory watcher, and
    sequences their startup and shutdown:

    - start(): optional initial load of an existing snapshot, then watching.
    - stop(): watcher first, then the scheduler with its grace period.
    - trigger_sync(): manual full resync (HTTP endpoint, CLI).
    - status(): watching / pending / executor state.
    """

    def __init__(
        self,
        store: DetectionStore,
        parser: SnapshotParser,
        watch_cfg: Optional[WatchConfig] = None,
        ingest_cfg: Optional[IngestConfig] = None,
        observer_factory: Callable[[], Any] = Observer,
    ):
        self.store = store
        self.parser = parser
        self.watch_cfg = watch_cfg or WatchConfig()
        self.ingest_cfg = ingest_cfg or IngestConfig()

        self.ingestor = SnapshotIngestor(store, parser, batch_size=self.ingest_cfg.batch_size)
        self.scheduler = DebounceScheduler(
            self.ingestor.ingest,
            debounce_s=self.ingest_cfg.debounce_s,
            retry_policy=RetryPolicy(
                backoff_s=self.ingest_cfg.retry_backoff_s,
                max_attempts=self.ingest_cfg.max_retry_attempts,
            ),
        )
        self.watcher = DirectoryWatcher(
            self.watch_cfg.directory,
            self.watch_cfg.file_name,
            self.scheduler,
            poll_timeout_s=self.watch_cfg.poll_timeout_s,
            observer_factory=observer_factory,
        )
        self._started = False

    @property
    def snapshot_path(self) -> str:
        return self.watcher.target_path

    def start(self) -> None:
        """Load the current snapshot (if configured and present) and start watching."""
        if self._started:
            return
        self._started = True

        if self.watch_cfg.load_on_start:
            if os.path.isfile(self.snapshot_path):
                logging.info(f"Loading initial data from {self.snapshot_path}")
                future = self.scheduler.force_now(self.snapshot_path)
                future.add_done_callback(self._log_initial_load)
            else:
                logging.warning(f"Snapshot file not found: {self.snapshot_path}")

        self.watcher.start()

    def stop(self) -> bool:
        """
        Stop watching and drain the scheduler.

        Returns:
            False if an ingest was still running after the grace period.
        """
        self.watcher.stop()
        drained = self.scheduler.shutdown(grace_s=self.ingest_cfg.shutdown_grace_s)
        self._started = False
        logging.info("Snapshot sync service stopped")
        return drained

    def trigger_sync(self, path: Optional[str] = None, timeout: Optional[float] = None) -> IngestOutcome:
        """
        Run a full resync now and wait for its outcome.

        Args:
            path: Snapshot to load; defaults to the watched file.
            timeout: Seconds to wait for the run (None waits indefinitely).

        Raises:
            The ingest failure (SnapshotReadError, SnapshotDecodeError, StoreError),
            RuntimeError if the service has been stopped, or
            concurrent.futures.TimeoutError.
        """
        target = path or self.snapshot_path
        return self.scheduler.force_now(target).result(timeout=timeout)

    def status(self) -> SyncStatus:
        stats = self.scheduler.stats()
        return SyncStatus(
            watching=self.watcher.is_watching,
            pending_paths=stats["pending_paths"],
            executor_active=stats["executor_active"],
            in_flight=stats["in_flight"],
            runs=stats["runs"],
            retries=stats["retries"],
            last_outcome=stats["last_outcome"],
            last_error=stats["last_error"],
        )

    @staticmethod
    def _log_initial_load(future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logging.error(f"Error loading initial data: {error}")
