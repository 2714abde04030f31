"""
FileChangeEvent model for watcher notifications.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class ChangeKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"


@dataclass(frozen=True)
class FileChangeEvent:
    """
    A create/modify notification for a file in the watched directory.

    Produced by the watcher's event handler, consumed once by the watch loop.
    """
    path: str
    kind: ChangeKind
    observed_at: float = field(default_factory=time.time)
