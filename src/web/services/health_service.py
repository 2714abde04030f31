from __future__ import annotations

import os
import platform
import shutil
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from models.status import SyncStatus


def derive_status(sync: SyncStatus, disk_pct_free: Optional[float]) -> Tuple[str, List[str]]:
    """
    Lightweight status classifier used by /api/health.
    Executor stopped => offline; watcher down or last run failed => degraded;
    disk free < 10% warns.
    """
    level = "running"
    alerts: List[str] = []
    if not sync.executor_active:
        level = "offline"
        alerts.append("ingest_stopped")
    if not sync.watching:
        alerts.append("watcher_down")
        if level == "running":
            level = "degraded"
    if sync.last_error:
        alerts.append("last_ingest_failed")
        if level == "running":
            level = "degraded"

    if disk_pct_free is not None and disk_pct_free < 10:
        alerts.append("disk_low")
        if level == "running":
            level = "degraded"

    return level, alerts


@dataclass
class HealthService:
    ctx: Any

    def get_health_summary(self) -> Dict[str, Any]:
        service = self.ctx.sync_service
        sync = service.status()
        db_path = getattr(self.ctx.store, "local_database_path", None)
        disk = self.disk_usage(os.path.dirname(db_path or "") or ".")
        level, alerts = derive_status(sync, disk.get("pct_free"))
        return {
            "status": level,
            "alerts": alerts,
            "uptime_seconds": self.ctx.uptime_seconds(),
            "snapshot_path": service.snapshot_path,
            "snapshot_exists": os.path.isfile(service.snapshot_path),
            "storage_db_path": db_path,
            "store": self.ctx.store.get_counts_summary(),
            "disk": disk,
            "sync": sync.to_dict(),
            "platform": platform.platform(),
            "python": platform.python_version(),
            "timestamp": time.time(),
        }

    @staticmethod
    def disk_usage(path: Optional[str] = None) -> Dict[str, Any]:
        """
        Lightweight disk stats for the health endpoint.
        """
        try:
            usage = shutil.disk_usage(path or ".")
        except OSError:
            return {
                "total_bytes": None,
                "free_bytes": None,
                "pct_free": None,
                "error": "disk_usage_failed",
            }
        pct_free = (usage.free / usage.total * 100) if usage.total else None
        return {
            "total_bytes": usage.total,
            "free_bytes": usage.free,
            "pct_free": pct_free,
        }
