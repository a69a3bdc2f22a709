"""
API Sniffer - HTTP request/response capture for local debugging.

Captures exchanges through FastAPI/Starlette middleware, keeps a bounded
and masked history in memory, and persists it to a JSON file without
blocking the request path.
"""

__version__ = "0.1.0"

from .core.store import LogStore
from .middleware import SnifferMiddleware

__all__ = ["LogStore", "SnifferMiddleware", "__version__"]
