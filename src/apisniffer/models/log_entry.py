"""
Captured exchange data models.

- LogEntry: one request/response pair with timing metadata
- LogFilter: query predicates for get_logs / export_logs
- JSON field names are camelCase (statusCode, responseTime) so the
  persisted file keeps its documented layout
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so comparisons never mix kinds."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SnifferModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class CapturedRequest(SnifferModel):
    """Normalized request half of a captured exchange."""

    method: str = Field(min_length=1, description="HTTP method")
    path: str = Field(description="Request path without query string")
    query: Dict[str, Any] = Field(default_factory=dict, description="Parsed query parameters")
    ip: Optional[str] = Field(default=None, description="Client address")
    headers: Dict[str, Any] = Field(default_factory=dict, description="Request headers")
    body: Optional[Any] = Field(default=None, description="Parsed request body")

    model_config = ConfigDict(frozen=True)

    @field_validator("method")
    def normalize_method(cls, v: str) -> str:
        return v.upper()


class CapturedResponse(SnifferModel):
    """Normalized response half of a captured exchange."""

    status_code: int = Field(ge=100, le=599, description="HTTP status code")
    headers: Dict[str, Any] = Field(default_factory=dict, description="Response headers")
    body: Optional[Any] = Field(default=None, description="Parsed response body")

    model_config = ConfigDict(frozen=True)


class LogEntry(SnifferModel):
    """
    A stored request/response pair.

    Immutable once created; masking has already been applied.
    """

    sequence: int = Field(ge=1, description="Capture order, never reused")
    timestamp: datetime = Field(description="Capture instant (UTC)")
    request: CapturedRequest
    response: CapturedResponse
    response_time: float = Field(ge=0, description="Milliseconds from request to response")

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp")
    def validate_timestamp(cls, v: datetime) -> datetime:
        return _ensure_utc(v)

    @property
    def endpoint(self) -> str:
        """Method and path, used to group statistics."""
        return f"{self.request.method} {self.request.path}"

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class LogFilter(SnifferModel):
    """
    Query predicates, combined with logical AND.

    A missing field means no constraint on that field.
    """

    method: Optional[str] = Field(default=None, description="Exact HTTP method")
    status_code: Optional[int] = Field(default=None, description="Exact status code")
    path_pattern: Optional[str] = Field(default=None, description="Regex searched in path")
    since: Optional[datetime] = Field(default=None, description="Inclusive lower bound")
    limit: Optional[int] = Field(default=None, ge=0, description="Maximum entries returned")

    @field_validator("since")
    def validate_since(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(v)
