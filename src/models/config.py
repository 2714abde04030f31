"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class WatchConfig:
    """Snapshot directory watch configuration."""
    directory: str = "../detections"
    file_name: str = "detections.json"
    poll_timeout_s: float = 1.0
    load_on_start: bool = True

    @property
    def snapshot_path(self) -> str:
        return os.path.join(self.directory, self.file_name)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WatchConfig":
        """Adapter: Create from config dictionary."""
        return cls(
            directory=d.get("directory", "../detections"),
            file_name=d.get("file_name", "detections.json"),
            poll_timeout_s=float(d.get("poll_timeout_s", 1.0)),
            load_on_start=d.get("load_on_start", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "directory": self.directory,
            "file_name": self.file_name,
            "poll_timeout_s": self.poll_timeout_s,
            "load_on_start": self.load_on_start,
        }


@dataclass
class IngestConfig:
    """Debounce, batching and retry configuration."""
    debounce_s: float = 1.0
    batch_size: int = 20
    retry_backoff_s: float = 5.0
    max_retry_attempts: int = 5
    shutdown_grace_s: float = 10.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "IngestConfig":
        return cls(
            debounce_s=float(d.get("debounce_s", 1.0)),
            batch_size=int(d.get("batch_size", 20)),
            retry_backoff_s=float(d.get("retry_backoff_s", 5.0)),
            max_retry_attempts=int(d.get("max_retry_attempts", 5)),
            shutdown_grace_s=float(d.get("shutdown_grace_s", 10.0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "debounce_s": self.debounce_s,
            "batch_size": self.batch_size,
            "retry_backoff_s": self.retry_backoff_s,
            "max_retry_attempts": self.max_retry_attempts,
            "shutdown_grace_s": self.shutdown_grace_s,
        }


@dataclass
class StorageConfig:
    """Storage configuration."""
    local_database_path: str = "data/detections.sqlite"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StorageConfig":
        return cls(
            local_database_path=d.get("local_database_path", "data/detections.sqlite"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "local_database_path": self.local_database_path,
        }


@dataclass
class WebConfig:
    """HTTP trigger surface configuration."""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 5000

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WebConfig":
        return cls(
            enabled=d.get("enabled", True),
            host=d.get("host", "0.0.0.0"),
            port=int(d.get("port", 5000)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "host": self.host,
            "port": self.port,
        }


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    watch: WatchConfig = field(default_factory=WatchConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    web: WebConfig = field(default_factory=WebConfig)
    log_path: str = "logs/detection_sync.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            watch=WatchConfig.from_dict(d.get("watch", {}) or {}),
            ingest=IngestConfig.from_dict(d.get("ingest", {}) or {}),
            storage=StorageConfig.from_dict(d.get("storage", {}) or {}),
            web=WebConfig.from_dict(d.get("web", {}) or {}),
            log_path=d.get("log_path", "logs/detection_sync.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or logging the effective config)."""
        return {
            "watch": self.watch.to_dict(),
            "ingest": self.ingest.to_dict(),
            "storage": self.storage.to_dict(),
            "web": self.web.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
