"""
FastAPI application factory for the detection snapshot sync service.

Routes:
- /api/sync, /api/detections/load-json -> manual full resync (POST)
- /api/sync/status -> watcher/scheduler state
- /api/health -> process, store and disk summary
- /api/v1/* -> versioned aliases
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from runtime.context import RuntimeContext

from .routes import api


def create_app(ctx: RuntimeContext) -> FastAPI:
    """Create the FastAPI app bound to a runtime context."""
    app = FastAPI(
        title="Detection Snapshot Sync",
        version="0.1.0",
        description="Keeps the detections store in sync with the exported snapshot file",
    )
    app.state.ctx = ctx

    # CORS for the dashboard dev servers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:3001",
            "http://127.0.0.1:3001",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api.router, prefix="/api")
    app.include_router(api.router_v1)

    return app
