"""
Starlette / FastAPI capture middleware.

Records every completed request/response cycle into a LogStore.

Usage::

    from apisniffer import LogStore, SnifferMiddleware

    store = LogStore(max_logs=500)
    app.add_middleware(SnifferMiddleware, store=store, log_level="full")
"""

import json
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .core.store import LogStore

logger = structlog.get_logger(__name__)

LOG_LEVELS = ("minimal", "headers-only", "full")
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class SnifferMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures API traffic into a log store.

    Levels:
    - minimal: method, path, status and timing
    - headers-only: adds query, headers and client address
    - full: adds request and response bodies
    """

    def __init__(
        self,
        app: ASGIApp,
        store: LogStore,
        log_level: str = "headers-only",
        max_body_bytes: int = 65536,
        exclude_prefixes: Sequence[str] = ("/_sniffer",),
    ) -> None:
        super().__init__(app)
        if log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {log_level!r}")
        self.store = store
        self.log_level = log_level
        self.max_body_bytes = max_body_bytes
        self.exclude_prefixes = tuple(p for p in exclude_prefixes if p)

    @property
    def capture_headers(self) -> bool:
        return self.log_level != "minimal"

    @property
    def capture_bodies(self) -> bool:
        return self.log_level == "full"

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith(self.exclude_prefixes):
            return await call_next(request)

        started = time.perf_counter()
        captured_at = datetime.now(timezone.utc)

        request_body = b""
        if self.capture_bodies:
            request_body = await request.body()

        try:
            response = await call_next(request)
        except Exception:
            # Unhandled errors become a 500 outside this middleware
            response_time = (time.perf_counter() - started) * 1000.0
            self._record(request, request_body, 500, {}, b"", 0, response_time, captured_at)
            raise

        # Timing ends when the last body chunk has been handed to the server
        response.body_iterator = self._track_body(  # type: ignore[attr-defined]
            response.body_iterator,  # type: ignore[attr-defined]
            request,
            request_body,
            response,
            started,
            captured_at,
        )
        return response

    async def _track_body(
        self,
        body_iterator: AsyncIterator[Any],
        request: Request,
        request_body: bytes,
        response: Response,
        started: float,
        captured_at: datetime,
    ) -> AsyncIterator[Any]:
        chunks: List[bytes] = []
        size = 0
        try:
            async for chunk in body_iterator:
                if self.capture_bodies:
                    data = chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
                    size += len(data)
                    if size <= self.max_body_bytes:
                        chunks.append(data)
                yield chunk
        finally:
            response_time = (time.perf_counter() - started) * 1000.0
            self._record(
                request,
                request_body,
                response.status_code,
                dict(response.headers),
                b"".join(chunks),
                size,
                response_time,
                captured_at,
            )

    def _record(
        self,
        request: Request,
        request_body: bytes,
        status_code: int,
        response_headers: Dict[str, Any],
        response_body: bytes,
        response_size: int,
        response_time: float,
        captured_at: datetime,
    ) -> None:
        """Build the capture record; failures are logged, never raised."""
        try:
            record: Dict[str, Any] = {
                "timestamp": captured_at,
                "request": {
                    "method": request.method,
                    "path": request.url.path,
                    "query": {},
                    "ip": None,
                    "headers": {},
                },
                "response": {
                    "statusCode": status_code,
                    "headers": {},
                },
                "responseTime": round(response_time, 3),
            }

            if self.capture_headers:
                record["request"]["query"] = _query_dict(request.query_params.multi_items())
                record["request"]["ip"] = request.client.host if request.client else None
                record["request"]["headers"] = dict(request.headers)
                record["response"]["headers"] = response_headers

            if self.capture_bodies:
                record["request"]["body"] = self._parse_body(
                    request_body, len(request_body), request.headers.get("content-type")
                )
                record["response"]["body"] = self._parse_body(
                    response_body, response_size, response_headers.get("content-type")
                )

            self.store.add_log(record)
        except Exception as e:
            logger.error(
                "Failed to record captured request",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    def _parse_body(self, data: bytes, size: int, content_type: Optional[str] = None) -> Any:
        """Parse forms and JSON into structures, fall back to text, mark oversized bodies."""
        if size > self.max_body_bytes:
            return f"[body truncated: {size} bytes]"
        if data and _is_form(content_type):
            return _query_dict(parse_qsl(data.decode("utf-8", errors="replace"), keep_blank_values=True))
        return _try_parse_json(data)


def _is_form(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() == FORM_CONTENT_TYPE


def _query_dict(items: Iterable[Tuple[str, str]]) -> Dict[str, Any]:
    """Key/value pairs as a dict; repeated keys become lists."""
    query: Dict[str, Any] = {}
    for key, value in items:
        if key in query:
            existing = query[key]
            query[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            query[key] = value
    return query


def _try_parse_json(data: Optional[bytes]) -> Any:
    """Try to parse bytes as JSON, return raw string on failure."""
    if not data:
        return None
    try:
        return json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return data.decode("utf-8", errors="replace")
