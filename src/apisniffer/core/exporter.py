"""
Export of buffered entries to JSON or CSV text.
"""

import csv
import io
import json
from typing import Any, Callable, Dict, List

from ..models.log_entry import LogEntry
from .exceptions import UnsupportedFormatError

CSV_COLUMNS = [
    "sequence",
    "timestamp",
    "method",
    "path",
    "statusCode",
    "responseTime",
    "ip",
    "query",
    "requestHeaders",
    "requestBody",
    "responseHeaders",
    "responseBody",
]


def _cell(value: Any) -> str:
    """Nested values become JSON text inside their cell."""
    if value is None:
        return ""
    return json.dumps(value, ensure_ascii=False, sort_keys=False)


def export_json(entries: List[LogEntry]) -> str:
    """Pretty JSON array with camelCase keys in model field order."""
    return json.dumps([entry.to_dict() for entry in entries], indent=2, ensure_ascii=False)


def export_csv(entries: List[LogEntry]) -> str:
    """Header row then one row per entry, quoted by the csv module."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)

    for entry in entries:
        data = entry.to_dict()
        request = data["request"]
        response = data["response"]
        writer.writerow([
            data["sequence"],
            data["timestamp"],
            request["method"],
            request["path"],
            response["statusCode"],
            data["responseTime"],
            request.get("ip") or "",
            _cell(request.get("query")),
            _cell(request.get("headers")),
            _cell(request.get("body")),
            _cell(response.get("headers")),
            _cell(response.get("body")),
        ])

    return output.getvalue()


EXPORTERS: Dict[str, Callable[[List[LogEntry]], str]] = {
    "json": export_json,
    "csv": export_csv,
}

MEDIA_TYPES: Dict[str, str] = {
    "json": "application/json",
    "csv": "text/csv",
}


def export_entries(entries: List[LogEntry], export_format: str) -> str:
    """Serialize entries in the requested format."""
    exporter = EXPORTERS.get(str(export_format).lower())
    if exporter is None:
        raise UnsupportedFormatError(str(export_format), supported=sorted(EXPORTERS))
    return exporter(entries)
