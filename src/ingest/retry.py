"""
Transient-failure classification for ingest runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from snapshot.parser import SnapshotDecodeError

# Lower-cased message fragments of failures that clear once a writer lets go
TRANSIENT_MESSAGE_PATTERNS = (
    "locked",
    "access denied",
    "access is denied",
    "permission denied",
    "in use by another process",
    "being used by another process",
    "resource temporarily unavailable",
    "sharing violation",
    "disk i/o error",
)


def is_retryable(exc: Optional[BaseException]) -> bool:
    """
    Decide whether a failure raised out of the ingestor is worth retrying.

    Retryable: any OSError (permission, not-found, generic I/O) and any
    failure whose message matches a known transient condition. Structural
    decode failures are never retryable. The explicit cause chain is
    inspected when the failure itself does not match.
    """
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, SnapshotDecodeError):
            return False
        if isinstance(exc, OSError):
            return True
        message = str(exc).lower()
        if any(pattern in message for pattern in TRANSIENT_MESSAGE_PATTERNS):
            return True
        exc = exc.__cause__
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-backoff retry policy.

    Attributes:
        backoff_s: Delay before each retry.
        max_attempts: Retries allowed after the first failed run.
    """
    backoff_s: float = 5.0
    max_attempts: int = 5

    def __post_init__(self):
        if self.backoff_s < 0:
            raise ValueError("backoff_s must be non-negative")
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be non-negative")

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """
        Args:
            exc: Failure of the run.
            attempt: Retries already made for this invocation (0 for the first run).
        """
        return attempt < self.max_attempts and is_retryable(exc)
