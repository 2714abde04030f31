"""
Exceptions raised across the ingest boundary.
"""

from __future__ import annotations

from snapshot.parser import SnapshotDecodeError


class IngestError(Exception):
    """Base class for failures of a single ingest cycle."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class SnapshotReadError(IngestError):
    """The snapshot file exists but could not be read (chained to the OSError)."""


class StoreError(IngestError):
    """Replacing the store contents failed and was rolled back (chained to the sqlite3.Error)."""


__all__ = ["IngestError", "SnapshotReadError", "StoreError", "SnapshotDecodeError"]
