"""Statistics over buffered entries: status classes, methods, latency, top endpoints."""

import math
from collections import Counter
from typing import Iterable, List

from ..models.log_entry import LogEntry
from ..models.status import EndpointCount, Statistics


def status_bucket(status_code: int) -> str:
    """Map 404 to '4xx' and so on."""
    return f"{status_code // 100}xx"


def percentile(sorted_values: List[float], pct: float) -> float:
    """Nearest-rank percentile of an already sorted list."""
    if not sorted_values:
        return 0.0
    rank = math.ceil(pct / 100.0 * len(sorted_values))
    return sorted_values[max(0, min(rank, len(sorted_values)) - 1)]


def compute_stats(entries: Iterable[LogEntry], top_n: int = 10) -> Statistics:
    """Consume an entry stream and produce aggregated statistics."""
    status_counter: Counter = Counter()
    method_counter: Counter = Counter()
    endpoint_counter: Counter = Counter()
    latencies: List[float] = []
    errors = 0

    for entry in entries:
        status_code = entry.response.status_code
        status_counter[status_bucket(status_code)] += 1
        method_counter[entry.request.method] += 1
        endpoint_counter[entry.endpoint] += 1
        latencies.append(entry.response_time)
        if status_code >= 400:
            errors += 1

    total = len(latencies)
    if total == 0:
        return Statistics()

    latencies.sort()
    return Statistics(
        total=total,
        status_codes=dict(sorted(status_counter.items())),
        methods=dict(method_counter.most_common()),
        average_response_time=round(sum(latencies) / total, 3),
        p95_response_time=percentile(latencies, 95),
        p99_response_time=percentile(latencies, 99),
        error_rate=round(errors / total, 4),
        top_endpoints=[
            EndpointCount(endpoint=endpoint, count=count)
            for endpoint, count in endpoint_counter.most_common(max(0, top_n))
        ],
    )
