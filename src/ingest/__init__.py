"""
Snapshot ingestion: full-replace ingestor, debounce scheduler and retry classification.
"""

from .errors import IngestError, SnapshotReadError, StoreError
from .ingestor import SnapshotIngestor
from .retry import RetryPolicy, is_retryable
from .scheduler import DebounceScheduler

__all__ = [
    "IngestError",
    "SnapshotReadError",
    "StoreError",
    "SnapshotIngestor",
    "RetryPolicy",
    "is_retryable",
    "DebounceScheduler",
]
