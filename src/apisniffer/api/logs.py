"""
Dashboard data endpoints.

Mounted under the capture route prefix (default /_sniffer):
GET /logs, GET /stats, GET /export, DELETE /logs, GET /sync-status,
POST /refresh, POST /flush
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ..core.exporter import MEDIA_TYPES
from ..core.store import LogStore
from ..models import LogFilter, LogListResponse, Statistics, SyncStatus

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_store(request: Request) -> LogStore:
    """Dependency to get the log store from app state."""
    store = getattr(request.app.state, "sniffer_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Log store not initialized",
        )
    return store


def get_log_filter(
    method: Optional[str] = Query(None, description="Exact HTTP method"),
    status_code: Optional[int] = Query(None, description="Exact status code"),
    path_pattern: Optional[str] = Query(None, description="Regular expression matched against the path"),
    since: Optional[datetime] = Query(None, description="Only entries at or after this instant"),
    limit: Optional[int] = Query(None, ge=0, le=100000, description="Maximum entries returned"),
) -> LogFilter:
    return LogFilter(
        method=method,
        status_code=status_code,
        path_pattern=path_pattern,
        since=since,
        limit=limit,
    )


@router.get(
    "/logs",
    response_model=LogListResponse,
    summary="Query captured requests",
    description="""
    Captured request/response pairs, most recent first.

    All filters are optional and combined with AND.
    An invalid `path_pattern` returns 400.
    """,
)
async def list_logs(
    log_filter: LogFilter = Depends(get_log_filter),
    store: LogStore = Depends(get_store),
) -> LogListResponse:
    logs = store.get_logs(log_filter)
    return LogListResponse(logs=logs, count=len(logs), total=len(store.buffer))


@router.delete("/logs", summary="Clear captured requests")
async def clear_logs(store: LogStore = Depends(get_store)) -> Dict[str, Any]:
    cleared = len(store.buffer)
    store.clear_logs()
    logger.info("Logs cleared via API", cleared=cleared)
    return {"message": "Logs cleared", "cleared": cleared}


@router.get("/stats", response_model=Statistics, summary="Aggregated statistics")
async def get_stats(store: LogStore = Depends(get_store)) -> Statistics:
    return store.get_stats()


@router.get(
    "/export",
    summary="Export captured requests",
    description="""
    Download the filtered entries as `json` or `csv`.

    Any other format returns 400 `unsupported_format`.
    """,
)
async def export_logs(
    format: str = Query("json", description="json or csv"),
    log_filter: LogFilter = Depends(get_log_filter),
    store: LogStore = Depends(get_store),
) -> Response:
    content = store.export_logs(format, log_filter)
    export_format = format.lower()

    return Response(
        content=content,
        media_type=MEDIA_TYPES[export_format],
        headers={"Content-Disposition": f'attachment; filename="api-sniffer-logs.{export_format}"'},
    )


@router.get("/sync-status", response_model=SyncStatus, summary="Persistence status")
async def get_sync_status(store: LogStore = Depends(get_store)) -> SyncStatus:
    return store.get_sync_status()


@router.post("/refresh", summary="Reload entries from the persisted file")
async def refresh_logs(store: LogStore = Depends(get_store)) -> Dict[str, Any]:
    entries = await store.refresh()
    return {"message": "Logs reloaded", "entries": entries}


@router.post("/flush", summary="Persist the buffer now")
async def flush_logs(store: LogStore = Depends(get_store)) -> Dict[str, Any]:
    if not store.persistent:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Persistence is disabled",
        )

    ok = await store.flush()
    if not ok:
        sync_status = store.get_sync_status()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Flush failed: {sync_status.last_error}",
        )

    logger.info("Manual flush completed")
    return {
        "message": "Flush completed successfully",
        "syncStatus": store.get_sync_status().model_dump(mode="json", by_alias=True),
    }
