"""
Database module for storing detection snapshot records.

The `detections` table always holds exactly the contents of the last
successfully ingested snapshot. Schema versioning ensures automatic migration
when the schema changes.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from models.detection_record import EMPTY_PAYLOAD, DetectionRecord, PayloadKind

# Schema version - increment when schema changes
EXPECTED_SCHEMA_VERSION = 1

DEFAULT_BATCH_SIZE = 20

_INSERT_SQL = """
    INSERT INTO detections (
        timestamp_ms, date, objects_total, objects_by_lane, avg_speed_by_lane
    ) VALUES (?, ?, ?, ?, ?)
"""


class DetectionStore:
    """
    SQLite store for detection records.

    Tables:
    - schema_meta: tracks schema version
    - detections: one row per snapshot entry

    Write operations raise sqlite3.Error so callers can classify and retry.
    Lookups log errors and return empty results.

    The connection is shared between the ingest worker and readers (web
    thread), so every operation holds an RLock.
    """

    def __init__(self, local_database_path: str):
        """
        Initialize the store.

        Args:
            local_database_path: Path to the SQLite database file.
        """
        self.local_database_path = local_database_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._in_transaction = False

        db_dir = os.path.dirname(local_database_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        logging.info(f"Detection store initialized at {local_database_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self.conn is None:
            self.conn = sqlite3.connect(
                self.local_database_path,
                check_same_thread=False,
                timeout=5.0,
            )
            self.conn.row_factory = sqlite3.Row
        return self.conn

    def _get_schema_version(self) -> Optional[int]:
        """Get current schema version from database."""
        try:
            cursor = self._get_connection().cursor()
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_meta'"
            )
            if cursor.fetchone() is None:
                return None

            cursor.execute("SELECT schema_version FROM schema_meta LIMIT 1")
            row = cursor.fetchone()
            return row[0] if row else None
        except sqlite3.Error:
            return None

    def _create_schema(self) -> None:
        cursor = self._get_connection().cursor()

        cursor.execute("DROP TABLE IF EXISTS detections")
        cursor.execute("DROP TABLE IF EXISTS schema_meta")

        cursor.execute("""
            CREATE TABLE schema_meta (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                schema_version INTEGER NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)

        cursor.execute("""
            CREATE TABLE detections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp_ms INTEGER NOT NULL,
                date TEXT NOT NULL DEFAULT '',
                objects_total TEXT NOT NULL DEFAULT '{}',
                objects_by_lane TEXT NOT NULL DEFAULT '{}',
                avg_speed_by_lane TEXT NOT NULL DEFAULT '{}'
            )
        """)
        cursor.execute(
            "CREATE INDEX idx_detections_timestamp ON detections(timestamp_ms)"
        )

        cursor.execute(
            "INSERT INTO schema_meta (id, schema_version) VALUES (1, ?)",
            (EXPECTED_SCHEMA_VERSION,)
        )

        self._get_connection().commit()
        logging.info(f"Created schema version {EXPECTED_SCHEMA_VERSION}")

    def initialize(self) -> None:
        """
        Initialize the database schema.

        If schema_meta is missing or the version doesn't match
        EXPECTED_SCHEMA_VERSION, tables are recreated. Data is a mirror of the
        snapshot file, so nothing is lost that the next ingest won't restore.
        """
        with self._lock:
            try:
                current_version = self._get_schema_version()

                if current_version != EXPECTED_SCHEMA_VERSION:
                    if current_version is not None:
                        logging.warning(
                            f"Schema version mismatch: found {current_version}, "
                            f"expected {EXPECTED_SCHEMA_VERSION}. Recreating tables."
                        )
                    else:
                        logging.info("No schema found, creating fresh database.")
                    self._create_schema()
                else:
                    logging.info(f"Schema version {current_version} is current")

            except sqlite3.Error as e:
                logging.error(f"Database initialization error: {e}")
                raise

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run several write operations as one unit.

        Commits on success, rolls back and re-raises on any error. Writes
        inside the block do not commit individually.
        """
        with self._lock:
            conn = self._get_connection()
            self._in_transaction = True
            try:
                yield conn
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._in_transaction = False

    def _commit(self) -> None:
        if not self._in_transaction:
            self._get_connection().commit()

    def count(self) -> int:
        """Total number of stored detections."""
        with self._lock:
            cursor = self._get_connection().cursor()
            cursor.execute("SELECT COUNT(*) FROM detections")
            return int(cursor.fetchone()[0])

    def delete_all(self) -> int:
        """
        Delete every stored detection.

        Returns:
            Number of rows deleted.
        """
        with self._lock:
            cursor = self._get_connection().cursor()
            cursor.execute("DELETE FROM detections")
            deleted = cursor.rowcount
            self._commit()
            logging.debug(f"Deleted {deleted} detections")
            return deleted

    def insert_batch(self, records: Sequence[DetectionRecord]) -> int:
        """
        Insert a batch of records.

        Returns:
            Number of rows inserted.
        """
        if not records:
            return 0
        with self._lock:
            cursor = self._get_connection().cursor()
            cursor.executemany(_INSERT_SQL, [
                (
                    r.timestamp_ms,
                    r.date or "",
                    r.objects_total or EMPTY_PAYLOAD,
                    r.objects_by_lane or EMPTY_PAYLOAD,
                    r.avg_speed_by_lane or EMPTY_PAYLOAD,
                )
                for r in records
            ])
            self._commit()
            return len(records)

    def replace_all(
        self,
        records: Sequence[DetectionRecord],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """
        Replace the stored data set with `records` in a single transaction.

        Rows are inserted in fixed-size batches. On any failure the
        transaction is rolled back and the previous contents remain.

        Returns:
            Number of rows inserted.
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        inserted = 0
        with self.transaction():
            deleted = self.delete_all()
            for start in range(0, len(records), batch_size):
                batch = records[start:start + batch_size]
                inserted += self.insert_batch(batch)
                logging.debug(
                    f"Batch stored: {start + 1} - {start + len(batch)} ({len(batch)} records)"
                )
        logging.info(f"Replaced {deleted} stored detections with {inserted}")
        return inserted

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[DetectionRecord]:
        with self._lock:
            cursor = self._get_connection().cursor()
            cursor.execute(sql, tuple(params))
            return [DetectionRecord.from_row(dict(row)) for row in cursor.fetchall()]

    def exists_any(self) -> bool:
        try:
            return self.count() > 0
        except sqlite3.Error as e:
            logging.error(f"Error checking for detections: {e}")
            return False

    def find_most_recent(self) -> Optional[DetectionRecord]:
        """Most recent detection by timestamp, or None if the store is empty."""
        try:
            rows = self._query(
                "SELECT * FROM detections ORDER BY timestamp_ms DESC, id DESC LIMIT 1"
            )
            return rows[0] if rows else None
        except sqlite3.Error as e:
            logging.error(f"Error getting most recent detection: {e}")
            return None

    def find_recent(self, limit: int = 50) -> List[DetectionRecord]:
        """
        Get the most recent detections.

        Args:
            limit: Maximum number of records to return.
        """
        try:
            return self._query(
                "SELECT * FROM detections ORDER BY timestamp_ms DESC LIMIT ?",
                (limit,),
            )
        except sqlite3.Error as e:
            logging.error(f"Error getting recent detections: {e}")
            return []

    def find_by_timestamp_range(self, start_ms: int, end_ms: int) -> List[DetectionRecord]:
        """Detections with start_ms <= timestamp_ms <= end_ms, oldest first."""
        try:
            return self._query(
                "SELECT * FROM detections WHERE timestamp_ms BETWEEN ? AND ? "
                "ORDER BY timestamp_ms ASC",
                (start_ms, end_ms),
            )
        except sqlite3.Error as e:
            logging.error(f"Error getting detections by range: {e}")
            return []

    def find_by_date_pattern(self, pattern: str) -> List[DetectionRecord]:
        """Detections whose date matches a SQL LIKE pattern, oldest first."""
        try:
            return self._query(
                "SELECT * FROM detections WHERE date LIKE ? ORDER BY timestamp_ms ASC",
                (pattern,),
            )
        except sqlite3.Error as e:
            logging.error(f"Error getting detections by date: {e}")
            return []

    def find_with_non_empty_payload(self, kind: PayloadKind) -> List[DetectionRecord]:
        """
        Detections whose payload column holds data, newest first.

        Args:
            kind: Payload column to check.
        """
        column = PayloadKind(kind).value
        try:
            return self._query(
                f"SELECT * FROM detections WHERE {column} IS NOT NULL "
                f"AND {column} != '{EMPTY_PAYLOAD}' AND {column} != '' "
                "ORDER BY timestamp_ms DESC"
            )
        except sqlite3.Error as e:
            logging.error(f"Error getting detections with {column}: {e}")
            return []

    def get_counts_summary(self) -> Dict[str, Any]:
        """Totals used by the health endpoint."""
        try:
            total = self.count()
        except sqlite3.Error as e:
            logging.error(f"Error counting detections: {e}")
            total = None
        latest = self.find_most_recent()
        return {
            "total_detections": total,
            "latest_timestamp_ms": latest.timestamp_ms if latest else None,
        }

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
                logging.info("Database connection closed")
