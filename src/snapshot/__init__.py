"""
Snapshot file decoding.
"""

from .parser import SnapshotDecodeError, SnapshotEntry, SnapshotParser, coerce_timestamp

__all__ = ["SnapshotDecodeError", "SnapshotEntry", "SnapshotParser", "coerce_timestamp"]
