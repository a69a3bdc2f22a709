"""
Prometheus metrics endpoint.

Exposes metrics in Prometheus text format for scraping.
"""

import structlog
from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="""
    Prometheus metrics endpoint in standard text format.

    **Key Metrics:**
    - sniffer_logs_captured_total{method} - Stored captures
    - sniffer_logs_evicted_total - Ring buffer evictions
    - sniffer_buffer_entries - Current buffer size
    - sniffer_flushes_total{trigger} - Completed flushes
    - sniffer_flush_errors_total - Failed flushes
    - sniffer_flush_duration_seconds - Flush latency histogram
    """,
)
async def get_metrics(request: Request) -> Response:
    metrics_collector = getattr(request.app.state, "metrics", None)

    if not metrics_collector:
        logger.warning("Metrics collector not initialized")
        return Response(
            content="# Metrics collector not initialized\n",
            media_type=CONTENT_TYPE_LATEST,
        )

    metrics_data = generate_latest(metrics_collector.registry)
    logger.debug("Metrics scraped successfully", size_bytes=len(metrics_data))

    return Response(
        content=metrics_data,
        media_type=CONTENT_TYPE_LATEST,
    )
