"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- /_sniffer/logs, /stats, /export, /sync-status, /refresh, /flush - Dashboard data
- /metrics - Prometheus metrics
- /healthz - Liveness probe
"""
from .healthz import router as healthz_router
from .logs import router as logs_router
from .metrics import router as metrics_router

__all__ = ["healthz_router", "logs_router", "metrics_router"]
