"""
Pytest configuration and shared fixtures.
"""

import json
import os
import sys
import time

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))


def _wait_for(predicate, timeout=3.0, interval=0.01):
    """Poll predicate until it returns truthy or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def wait_for():
    """Polling helper for assertions on background threads."""
    return _wait_for


@pytest.fixture
def temp_db(tmp_path):
    """Path for a fresh SQLite database file."""
    return str(tmp_path / "data" / "detections.sqlite")


@pytest.fixture
def store(temp_db):
    """Initialized detection store, closed after the test."""
    from storage.database import DetectionStore

    s = DetectionStore(temp_db)
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def snapshot_dir(tmp_path):
    d = tmp_path / "detections"
    d.mkdir()
    return d


@pytest.fixture
def write_snapshot(snapshot_dir):
    """Write a detections snapshot and return its path."""

    def _write(entries, file_name="detections.json"):
        path = snapshot_dir / file_name
        path.write_text(json.dumps({"detections": entries}), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def sample_entries():
    return [
        {
            "timestamp_ms": 1718000000000,
            "date": "2024-06-10 08:13:20",
            "objects_total": {"car": 3, "truck": 1},
            "objects_by_lane": {"lane_1": {"car": 2}, "lane_2": {"car": 1, "truck": 1}},
            "avg_speed_by_lane": {"lane_1": 42.5, "lane_2": 38.0},
        },
        {
            "timestamp_ms": 1718000060000,
            "date": "2024-06-10 08:14:20",
            "objects_total": {"car": 1},
        },
        {
            "timestamp_ms": 1718000120000,
            "date": "2024-06-10 08:15:20",
            "objects_total": {},
            "objects_by_lane": {},
            "avg_speed_by_lane": {},
        },
    ]


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
watch:
  directory: "../detections"
  file_name: "detections.json"
  poll_timeout_s: 1.0
  load_on_start: true

ingest:
  debounce_s: 1.0
  batch_size: 20
  retry_backoff_s: 5.0
  max_retry_attempts: 5
  shutdown_grace_s: 10.0

storage:
  local_database_path: "data/test.sqlite"

web:
  enabled: true
  host: "0.0.0.0"
  port: 5000

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "watch": {
            "directory": "../detections",
            "file_name": "detections.json",
            "poll_timeout_s": 1.0,
            "load_on_start": True,
        },
        "ingest": {
            "debounce_s": 1.0,
            "batch_size": 20,
            "retry_backoff_s": 5.0,
            "max_retry_attempts": 5,
            "shutdown_grace_s": 10.0,
        },
        "storage": {
            "local_database_path": "data/test.sqlite",
        },
        "web": {
            "enabled": True,
            "host": "0.0.0.0",
            "port": 5000,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }


class FakeObserver:
    """Stands in for a watchdog Observer; records registration only."""

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        if self.fail_with is not None:
            raise self.fail_with
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


@pytest.fixture
def fake_observer():
    """A FakeObserver plus a factory returning it."""
    observer = FakeObserver()
    return observer, (lambda: observer)


@pytest.fixture
def observer_cls():
    """The FakeObserver class, for tests that need a custom instance."""
    return FakeObserver
