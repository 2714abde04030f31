"""
SyncStatus model for pipeline monitoring.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class SyncStatus:
    """
    Snapshot of the sync pipeline state.

    Attributes:
        watching: Whether the directory watcher loop is registered and running.
        pending_paths: Number of paths waiting out a debounce window.
        executor_active: Whether the ingest executor still accepts work.
        in_flight: Whether an ingest run is executing right now.
        runs: Completed ingest runs (successful or not).
        retries: Retries scheduled after transient failures.
        last_outcome: Serialized IngestOutcome of the last successful run.
        last_error: Message of the last failed run.
    """
    watching: bool = False
    pending_paths: int = 0
    executor_active: bool = False
    in_flight: bool = False
    runs: int = 0
    retries: int = 0
    last_outcome: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "watching": self.watching,
            "pending_paths": self.pending_paths,
            "executor_active": self.executor_active,
            "in_flight": self.in_flight,
            "runs": self.runs,
            "retries": self.retries,
            "last_outcome": self.last_outcome,
            "last_error": self.last_error,
        }
