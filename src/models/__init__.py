"""
Typed models for the detection snapshot sync service.
"""

from .detection_record import (
    EMPTY_PAYLOAD,
    DetectionRecord,
    IngestOutcome,
    IngestStatus,
    PayloadKind,
    decode_payload,
)
from .file_event import ChangeKind, FileChangeEvent
from .status import SyncStatus
from .config import (
    Config,
    WatchConfig,
    IngestConfig,
    StorageConfig,
    WebConfig,
)

__all__ = [
    # Records
    "EMPTY_PAYLOAD",
    "DetectionRecord",
    "IngestOutcome",
    "IngestStatus",
    "PayloadKind",
    "decode_payload",
    # Watch events
    "ChangeKind",
    "FileChangeEvent",
    # Status
    "SyncStatus",
    # Config
    "Config",
    "WatchConfig",
    "IngestConfig",
    "StorageConfig",
    "WebConfig",
]
