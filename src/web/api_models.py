from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class IngestOutcomeModel(BaseModel):
    path: str
    status: str = Field(..., description="success|missing|empty")
    records_in_file: int
    records_persisted: int
    records_dropped: int
    errors: List[str] = Field(default_factory=list)
    store_count: Optional[int] = None
    verified: bool
    started_at: float
    duration_s: float


class SyncResponse(BaseModel):
    status: str = Field("success", description="success|error")
    message: str
    outcome: Optional[IngestOutcomeModel] = None
    timestamp: int = Field(..., description="Epoch milliseconds")


class SyncStatusResponse(BaseModel):
    watching: bool
    pending_paths: int
    executor_active: bool
    in_flight: bool = False
    runs: int = 0
    retries: int = 0
    last_outcome: Optional[IngestOutcomeModel] = None
    last_error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = Field(..., description="running|degraded|offline")
    alerts: List[str]
    uptime_seconds: Optional[int]
    snapshot_path: str
    snapshot_exists: bool
    storage_db_path: Optional[str]
    store: Dict[str, Any]
    disk: Dict[str, Any]
    sync: SyncStatusResponse
    platform: str
    python: str
    timestamp: float
