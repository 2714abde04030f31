"""
Directory watcher for the detections snapshot file.

Uses watchdog to observe the snapshot directory. Native notifications are
turned into FileChangeEvents on a bounded queue; a dedicated loop thread polls
that queue with a short timeout (so it can notice the stop flag between
polls) and hands changes of the snapshot file to the scheduler.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ingest.scheduler import DebounceScheduler
from models.file_event import ChangeKind, FileChangeEvent

# Events buffered between the observer thread and the watch loop
MAX_QUEUED_EVENTS = 1024


class SnapshotEventHandler(FileSystemEventHandler):
    """Converts watchdog notifications into FileChangeEvents."""

    def __init__(self, events: "queue.Queue[FileChangeEvent]"):
        super().__init__()
        self._events = events

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._put(event.src_path, ChangeKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._put(event.src_path, ChangeKind.MODIFIED)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Writers that replace the file atomically rename a temp file onto it
        if not event.is_directory:
            self._put(event.dest_path, ChangeKind.CREATED)

    def _put(self, path: Any, kind: ChangeKind) -> None:
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        try:
            self._events.put_nowait(FileChangeEvent(path=path, kind=kind))
        except queue.Full:
            logging.debug(f"Watch queue overflow, dropping {kind.value} event for {path}")


class DirectoryWatcher:
    """
    Watches one directory for create/modify events on one file name.

    Lifecycle:
        watcher = DirectoryWatcher("../detections", "detections.json", scheduler)
        watcher.start()   # returns immediately, loop runs in the background
        ...
        watcher.stop()

    Failure to create the directory or register the watch is logged and ends
    the loop; it never propagates to the caller. Watching again requires a
    fresh start().
    """

    def __init__(
        self,
        directory: str,
        file_name: str,
        scheduler: DebounceScheduler,
        poll_timeout_s: float = 1.0,
        observer_factory: Callable[[], Any] = Observer,
    ):
        if poll_timeout_s <= 0:
            raise ValueError("poll_timeout_s must be positive")
        self.directory = os.path.abspath(directory)
        self.file_name = file_name
        self.scheduler = scheduler
        self.poll_timeout_s = poll_timeout_s
        self._observer_factory = observer_factory

        self._events: "queue.Queue[FileChangeEvent]" = queue.Queue(maxsize=MAX_QUEUED_EVENTS)
        self.handler = SnapshotEventHandler(self._events)
        self._stop = threading.Event()
        self._watching = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def target_path(self) -> str:
        return os.path.join(self.directory, self.file_name)

    @property
    def is_watching(self) -> bool:
        return self._watching.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """
        Start the watch loop on a background thread.

        Returns:
            False if the loop is already running.
        """
        if self.is_running:
            logging.warning("Directory watcher already running")
            return False
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._watch_loop,
            name="snapshot-watcher",
            daemon=True,
        )
        self._thread.start()
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Ask the loop to exit and wait for it.

        The loop notices the flag at its next poll timeout.
        """
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout if timeout is not None else self.poll_timeout_s * 5)
            if self._thread.is_alive():
                logging.warning("Directory watcher did not stop in time")
                return
        self._thread = None

    def _watch_loop(self) -> None:
        try:
            if not os.path.isdir(self.directory):
                logging.warning(f"Watch directory missing, creating: {self.directory}")
            os.makedirs(self.directory, exist_ok=True)
        except OSError as e:
            logging.error(f"Cannot create watch directory {self.directory}: {e}")
            return

        try:
            observer = self._observer_factory()
            observer.schedule(self.handler, self.directory, recursive=False)
            observer.start()
        except (OSError, RuntimeError) as e:
            logging.error(f"Cannot watch {self.directory}: {e}")
            return

        self._watching.set()
        logging.info(f"Watching {self.directory} for changes to {self.file_name}")
        try:
            while not self._stop.is_set():
                try:
                    event = self._events.get(timeout=self.poll_timeout_s)
                except queue.Empty:
                    continue
                self._dispatch(event)
        except Exception as e:
            logging.error(f"Directory watcher loop failed: {e}")
        finally:
            self._watching.clear()
            observer.stop()
            observer.join(timeout=self.poll_timeout_s * 5)
            logging.info("Directory watcher stopped")

    def _dispatch(self, event: FileChangeEvent) -> None:
        if os.path.basename(event.path) != self.file_name:
            return
        logging.info(f"Snapshot {self.file_name} {event.kind.value}")
        self.scheduler.schedule(self.target_path)
