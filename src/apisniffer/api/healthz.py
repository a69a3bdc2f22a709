"""
Health check endpoint.

- /healthz: liveness plus a short summary of the store
"""

from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request

from .. import __version__

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/healthz",
    status_code=200,
    summary="Liveness probe",
    description="""
    Always returns 200 OK while the service is running.

    Includes buffered entry count and persistence state when a store
    is attached.
    """,
)
async def liveness_check(request: Request) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "apisniffer",
        "version": __version__,
    }

    store = getattr(request.app.state, "sniffer_store", None)
    if store is not None:
        sync_status = store.get_sync_status()
        body["store"] = {
            "entries": len(store.buffer),
            "persistent": store.persistent,
            "mode": sync_status.current_mode.value,
            "pending": sync_status.pending_entries,
            "flushErrors": sync_status.flush_errors,
        }

    return body
