from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class RuntimeContext:
    """Holds runtime state and service references; avoids global singletons."""

    config: dict
    store: Any
    parser: Any
    sync_service: Any
    config_path: Optional[str] = None

    # Observability
    system_stats: dict = field(default_factory=lambda: {"start_time": time.time()})

    def uptime_seconds(self) -> Optional[int]:
        start_time = self.system_stats.get("start_time")
        if not start_time:
            return None
        return int(time.time() - start_time)
