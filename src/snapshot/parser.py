"""
Snapshot parser for the detections export file.

The exporter writes a JSON object whose `detections` member holds the full
current list of detection windows:

    {
      "detections": [
        {
          "timestamp_ms": 1718000000000,
          "date": "2024-06-10 08:13:20",
          "objects_total": {"car": 3, "truck": 1},
          "objects_by_lane": {"lane_1": {"car": 2}, "lane_2": {"car": 1, "truck": 1}},
          "avg_speed_by_lane": {"lane_1": 42.5, "lane_2": 38.0}
        }
      ]
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from models.detection_record import EMPTY_PAYLOAD, decode_payload

# Top-level member holding the entry list
DETECTIONS_KEY = "detections"


class SnapshotDecodeError(ValueError):
    """Raised when the snapshot file is structurally malformed."""


@dataclass(frozen=True)
class SnapshotEntry:
    """
    One decoded entry of the snapshot, before conversion to a stored record.

    Field values are kept as decoded; unknown fields are dropped. Coercion
    happens at conversion time so a bad entry only costs that entry.
    `error` is set when the list element was not an object at all.
    """
    timestamp_ms: Any = None
    date: Any = None
    objects_total: Any = None
    objects_by_lane: Any = None
    avg_speed_by_lane: Any = None
    error: Optional[str] = None


class SnapshotParser:
    """Decodes snapshot bytes into entries and encodes payloads to stored text."""

    def decode_snapshot(self, data: bytes) -> List[SnapshotEntry]:
        """
        Decode the raw file contents.

        Args:
            data: File contents. A UTF-8 BOM is tolerated.

        Returns:
            List of entries; empty if the list member is missing or null.

        Raises:
            SnapshotDecodeError: If the document itself is malformed. Problems
                inside a single entry are left to conversion.
        """
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise SnapshotDecodeError(f"Snapshot is not valid UTF-8: {e}") from e

        try:
            document = json.loads(text)
        except ValueError as e:
            raise SnapshotDecodeError(f"Snapshot is not valid JSON: {e}") from e

        if not isinstance(document, dict):
            raise SnapshotDecodeError(
                f"Snapshot top level must be an object, got {type(document).__name__}"
            )

        raw_entries = document.get(DETECTIONS_KEY)
        if raw_entries is None:
            return []
        if not isinstance(raw_entries, list):
            raise SnapshotDecodeError(
                f"'{DETECTIONS_KEY}' must be a list, got {type(raw_entries).__name__}"
            )

        return [self._decode_entry(i, raw) for i, raw in enumerate(raw_entries)]

    def _decode_entry(self, index: int, raw: Any) -> SnapshotEntry:
        if not isinstance(raw, dict):
            return SnapshotEntry(error=f"Entry {index} must be an object, got {type(raw).__name__}")

        return SnapshotEntry(
            timestamp_ms=raw.get("timestamp_ms"),
            date=raw.get("date"),
            objects_total=raw.get("objects_total"),
            objects_by_lane=raw.get("objects_by_lane"),
            avg_speed_by_lane=raw.get("avg_speed_by_lane"),
        )

    def encode_value(self, value: Any) -> str:
        """
        Serialize a payload for storage.

        None, non-mapping values and anything that fails to serialize become "{}".
        """
        if value is None:
            return EMPTY_PAYLOAD
        if not isinstance(value, dict):
            logging.debug(f"Payload is not a mapping ({type(value).__name__}), storing empty object")
            return EMPTY_PAYLOAD
        try:
            text = json.dumps(value, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as e:
            logging.warning(f"Could not serialize payload: {e}")
            return EMPTY_PAYLOAD
        if not text.strip() or text == "null":
            return EMPTY_PAYLOAD
        return text

    def decode_value(self, text: Optional[str]) -> Dict[str, Any]:
        """Decode stored payload text back to a mapping ({} when empty or invalid)."""
        return decode_payload(text)


def coerce_timestamp(value: Any) -> Optional[int]:
    """
    Convert a decoded timestamp_ms to an integer.

    Integral floats and numeric strings are accepted; None stays None.

    Raises:
        ValueError: For booleans, fractional values and anything non-numeric.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("timestamp_ms must be an integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValueError(f"timestamp_ms must be an integer, got {value!r}")
