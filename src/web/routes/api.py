from __future__ import annotations

import logging
import time
from concurrent.futures import TimeoutError as FutureTimeoutError

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from models.detection_record import IngestStatus
from runtime.context import RuntimeContext

from ..api_models import HealthResponse, SyncResponse, SyncStatusResponse
from ..services.health_service import HealthService

router = APIRouter()
router_v1 = APIRouter(prefix="/api/v1")

# Upper bound for a manual resync request
SYNC_TIMEOUT_S = 120.0


def _ctx(request: Request) -> RuntimeContext:
    return request.app.state.ctx


def _now_ms() -> int:
    return int(time.time() * 1000)


def _error(status_code: int, message: str, outcome=None) -> JSONResponse:
    return JSONResponse(
        {
            "status": "error",
            "message": message,
            "outcome": outcome,
            "timestamp": _now_ms(),
        },
        status_code=status_code,
    )


@router.get("/health")
@router_v1.get("/healthz", response_model=HealthResponse)
def health(request: Request):
    return HealthService(ctx=_ctx(request)).get_health_summary()


@router.get("/sync/status")
@router_v1.get("/sync/status", response_model=SyncStatusResponse)
def sync_status(request: Request):
    return _ctx(request).sync_service.status().to_dict()


@router.post("/sync")
@router.post("/detections/load-json")
@router_v1.post("/sync", response_model=SyncResponse)
def trigger_sync(request: Request):
    """
    Manual full resync from the snapshot file.

    Blocks until the ingest run (queued behind any in-flight run) finishes.
    - 200: store replaced (or snapshot empty, store kept)
    - 404: snapshot file missing or unreadable
    - 500: read, decode or store failure
    - 503: service stopped or run did not finish in time
    """
    service = _ctx(request).sync_service
    logging.info("Manual snapshot sync requested")
    try:
        outcome = service.trigger_sync(timeout=SYNC_TIMEOUT_S)
    except FutureTimeoutError:
        logging.error(f"Manual sync did not finish within {SYNC_TIMEOUT_S}s")
        return _error(503, f"Sync did not finish within {SYNC_TIMEOUT_S}s")
    except RuntimeError as e:
        logging.error(f"Manual sync rejected: {e}")
        return _error(503, str(e))
    except Exception as e:
        logging.error(f"Error loading snapshot manually: {e}")
        return _error(500, f"Error loading snapshot: {e}")

    if outcome.status == IngestStatus.MISSING:
        return _error(404, f"Snapshot file not found: {outcome.path}", outcome.to_dict())

    if outcome.status == IngestStatus.EMPTY:
        message = "Snapshot has no detections, stored data kept"
    else:
        message = f"Loaded {outcome.records_persisted} detections"
    return {
        "status": "success",
        "message": message,
        "outcome": outcome.to_dict(),
        "timestamp": _now_ms(),
    }
