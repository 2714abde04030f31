"""
DetectionRecord and IngestOutcome models.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Stored form of an absent payload
EMPTY_PAYLOAD = "{}"


class PayloadKind(str, Enum):
    """Payload columns of a stored detection."""
    OBJECTS_TOTAL = "objects_total"
    OBJECTS_BY_LANE = "objects_by_lane"
    AVG_SPEED_BY_LANE = "avg_speed_by_lane"


def decode_payload(text: Optional[str]) -> Dict[str, Any]:
    """
    Decode a stored payload back to a mapping.

    Missing, empty or unparseable text yields an empty dict, never None.
    """
    if not text or not text.strip():
        return {}
    try:
        value = json.loads(text)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class DetectionRecord:
    """
    A persisted detection snapshot entry.

    Attributes:
        timestamp_ms: Epoch milliseconds of the detection window (required).
        date: Human-readable date, "" when absent.
        objects_total: JSON text, type -> count.
        objects_by_lane: JSON text, lane -> type -> count.
        avg_speed_by_lane: JSON text, lane -> speed.
        id: Store row id, None until persisted.
    """
    timestamp_ms: int
    date: str = ""
    objects_total: str = EMPTY_PAYLOAD
    objects_by_lane: str = EMPTY_PAYLOAD
    avg_speed_by_lane: str = EMPTY_PAYLOAD
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DetectionRecord":
        """Adapter: build from a `detections` table row."""
        return cls(
            id=row.get("id"),
            timestamp_ms=int(row["timestamp_ms"]),
            date=row.get("date") or "",
            objects_total=row.get("objects_total") or EMPTY_PAYLOAD,
            objects_by_lane=row.get("objects_by_lane") or EMPTY_PAYLOAD,
            avg_speed_by_lane=row.get("avg_speed_by_lane") or EMPTY_PAYLOAD,
        )

    def payload(self, kind: PayloadKind) -> Dict[str, Any]:
        return decode_payload(getattr(self, kind.value))

    @property
    def totals_by_type(self) -> Dict[str, int]:
        return self.payload(PayloadKind.OBJECTS_TOTAL)

    @property
    def totals_by_lane(self) -> Dict[str, Dict[str, int]]:
        return self.payload(PayloadKind.OBJECTS_BY_LANE)

    @property
    def avg_speed_by_lane_map(self) -> Dict[str, float]:
        return self.payload(PayloadKind.AVG_SPEED_BY_LANE)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "timestamp_ms": self.timestamp_ms,
            "date": self.date,
            "objects_total": self.totals_by_type,
            "objects_by_lane": self.totals_by_lane,
            "avg_speed_by_lane": self.avg_speed_by_lane_map,
        }


class IngestStatus(str, Enum):
    SUCCESS = "success"
    MISSING = "missing"
    EMPTY = "empty"


@dataclass
class IngestOutcome:
    """
    Result of one ingest run. Used for verification and logging only.
    """
    path: str
    status: IngestStatus = IngestStatus.SUCCESS
    records_in_file: int = 0
    records_persisted: int = 0
    records_dropped: int = 0
    errors: List[str] = field(default_factory=list)
    store_count: Optional[int] = None
    started_at: float = field(default_factory=time.time)
    duration_s: float = 0.0

    @property
    def verified(self) -> bool:
        """True when the store holds exactly what was inserted."""
        return self.status == IngestStatus.SUCCESS and self.store_count == self.records_persisted

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "status": self.status.value,
            "records_in_file": self.records_in_file,
            "records_persisted": self.records_persisted,
            "records_dropped": self.records_dropped,
            "errors": list(self.errors),
            "store_count": self.store_count,
            "verified": self.verified,
            "started_at": self.started_at,
            "duration_s": self.duration_s,
        }
