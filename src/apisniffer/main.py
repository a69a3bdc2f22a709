"""
FastAPI application entry point.

Builds the dashboard service: log store, capture middleware, routes,
exception handlers and the lifespan that starts and flushes the store.
Also provides `install_sniffer` for adding capture to an existing app.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional, Sequence

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry

from . import __version__
from .api import healthz_router, logs_router, metrics_router
from .config import CaptureSettings, Settings, get_settings
from .core.exceptions import SnifferException
from .core.metrics import MetricsCollector
from .core.store import LogStore
from .middleware import SnifferMiddleware


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Silence the verbose watchfiles logger used by --reload
    logging.getLogger("watchfiles").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(store: LogStore) -> Any:
    """Create a lifespan handler that owns the store's background work."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Start persistence on the server's event loop and guarantee a
        final flush on shutdown.
        """
        logger = structlog.get_logger(__name__)
        logger.info("Starting API Sniffer", version=__version__, persistent=store.persistent)

        await store.start()
        try:
            yield
        finally:
            logger.info("Shutting down API Sniffer")
            await store.destroy()
            logger.info("API Sniffer shutdown complete")

    return lifespan


async def sniffer_exception_handler(request: Request, exc: SnifferException) -> JSONResponse:
    """Render sniffer exceptions as structured JSON errors."""
    logger = structlog.get_logger(__name__)
    logger.warning(
        "Sniffer exception occurred",
        error=str(exc),
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "details": exc.details,
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )


def install_sniffer(
    app: FastAPI,
    store: LogStore,
    capture: Optional[CaptureSettings] = None,
    exclude_prefixes: Sequence[str] = (),
) -> None:
    """
    Add capture middleware and dashboard routes to an existing app.

    The caller owns the store lifecycle: use `create_lifespan_handler(store)`
    or call `store.start()` / `store.destroy()` from its own lifespan.
    """
    capture = capture or CaptureSettings()

    app.state.sniffer_store = store
    app.add_middleware(
        SnifferMiddleware,
        store=store,
        log_level=capture.log_level,
        max_body_bytes=capture.max_body_bytes,
        exclude_prefixes=(capture.route_prefix, *exclude_prefixes),
    )
    app.include_router(logs_router, prefix=capture.route_prefix, tags=["sniffer"])
    app.add_exception_handler(SnifferException, sniffer_exception_handler)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[LogStore] = None,
) -> FastAPI:
    """
    Create and configure the dashboard application.

    A store built here gets its own metrics registry so several apps can
    coexist in one process.
    """
    settings = settings or get_settings()

    configure_logging(settings.log_level)

    if store is None:
        metrics: Optional[MetricsCollector] = MetricsCollector(CollectorRegistry())
        store = LogStore.from_settings(settings, metrics)
    else:
        metrics = store.metrics

    app = FastAPI(
        title="API Sniffer",
        description="HTTP request/response capture with a local dashboard API",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(store),
    )
    app.state.metrics = metrics

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    install_sniffer(
        app,
        store,
        settings.capture,
        exclude_prefixes=("/metrics", "/healthz", "/docs", "/redoc", "/openapi.json"),
    )
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "apisniffer.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )
