"""
Full-replace ingestion of the detections snapshot into the store.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from typing import List, Optional

from ingest.errors import SnapshotReadError, StoreError
from models.detection_record import DetectionRecord, IngestOutcome, IngestStatus
from snapshot.parser import SnapshotEntry, SnapshotParser, coerce_timestamp
from storage.database import DEFAULT_BATCH_SIZE, DetectionStore


class SnapshotIngestor:
    """
    Synchronizes the store from the snapshot file, one full replace per run.

    Each run:
    1. Checks the file exists and is readable (otherwise: no-op, status "missing").
    2. Reads and decodes it; read/decode failures raise, store untouched.
    3. Skips empty snapshots (status "empty"), store untouched.
    4. Converts entries with a timestamp and replaces the store contents in
       batches inside one transaction. An entry that cannot be converted is
       dropped on its own; if none survive, the store ends up empty.
    5. Re-counts the store and warns if the count differs from what was inserted.

    Runs are not thread-safe; the scheduler guarantees one at a time.
    """

    def __init__(
        self,
        store: DetectionStore,
        parser: SnapshotParser,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.parser = parser
        self.batch_size = batch_size

    def ingest(self, path: str) -> IngestOutcome:
        """
        Run one synchronization cycle for `path`.

        Raises:
            SnapshotReadError: The file could not be read (retryable).
            SnapshotDecodeError: The file is malformed (not retryable).
            StoreError: The replace failed and was rolled back.
        """
        started = time.time()
        outcome = IngestOutcome(path=path, started_at=started)

        if not os.path.isfile(path) or not os.access(path, os.R_OK):
            logging.warning(f"Snapshot file missing or unreadable, skipping: {path}")
            outcome.status = IngestStatus.MISSING
            return self._finish(outcome)

        data = self._read(path)
        logging.info(f"Read snapshot {path} ({len(data)} bytes)")

        entries = self.parser.decode_snapshot(data)
        outcome.records_in_file = len(entries)
        if not entries:
            logging.warning(f"No detections found in {path}, keeping stored data")
            outcome.status = IngestStatus.EMPTY
            return self._finish(outcome)

        logging.info(f"Found {len(entries)} detections in snapshot")

        records = self._convert(entries, outcome)
        outcome.records_dropped = len(entries) - len(records)
        if not records:
            logging.warning(f"None of the {len(entries)} detections has a usable timestamp, clearing stored data")

        try:
            outcome.records_persisted = self.store.replace_all(records, self.batch_size)
        except sqlite3.Error as e:
            raise StoreError(f"Replacing stored detections failed: {e}", path) from e

        self._verify(outcome)
        return self._finish(outcome)

    def _read(self, path: str) -> bytes:
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise SnapshotReadError(f"Could not read snapshot {path}: {e}", path) from e

    def _convert(self, entries: List[SnapshotEntry], outcome: IngestOutcome) -> List[DetectionRecord]:
        records = []
        for entry in entries:
            if entry.error is not None:
                self._drop(outcome, entry.error)
                continue
            if entry.timestamp_ms is None:
                continue
            record = self._to_record(entry, outcome)
            if record is not None:
                records.append(record)
        return records

    def _to_record(self, entry: SnapshotEntry, outcome: IngestOutcome) -> Optional[DetectionRecord]:
        try:
            return DetectionRecord(
                timestamp_ms=coerce_timestamp(entry.timestamp_ms),
                date=str(entry.date) if entry.date is not None else "",
                objects_total=self.parser.encode_value(entry.objects_total),
                objects_by_lane=self.parser.encode_value(entry.objects_by_lane),
                avg_speed_by_lane=self.parser.encode_value(entry.avg_speed_by_lane),
            )
        except (TypeError, ValueError) as e:
            self._drop(outcome, f"Dropped detection timestamp_ms={entry.timestamp_ms!r}: {e}")
            return None

    @staticmethod
    def _drop(outcome: IngestOutcome, message: str) -> None:
        logging.error(message)
        outcome.errors.append(message)

    def _verify(self, outcome: IngestOutcome) -> None:
        try:
            outcome.store_count = self.store.count()
        except sqlite3.Error as e:
            logging.warning(f"Could not verify stored detections: {e}")
            outcome.errors.append(f"verify failed: {e}")
            return

        if outcome.store_count != outcome.records_persisted:
            logging.warning(
                f"Store count mismatch: inserted {outcome.records_persisted}, "
                f"store holds {outcome.store_count}"
            )

    def _finish(self, outcome: IngestOutcome) -> IngestOutcome:
        outcome.duration_s = time.time() - outcome.started_at
        if outcome.status == IngestStatus.SUCCESS:
            logging.info(
                f"Ingest completed: in_file={outcome.records_in_file}, "
                f"persisted={outcome.records_persisted}, dropped={outcome.records_dropped}, "
                f"store_count={outcome.store_count}, duration={outcome.duration_s:.3f}s"
            )
        return outcome
