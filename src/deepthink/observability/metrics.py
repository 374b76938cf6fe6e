from __future__ import annotations

"""Prometheus metrics for the DeepThink API.

Adds an HTTP middleware that records request latency per method/path/status,
plus the per-stage and per-session series recorded by the stream orchestrator.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Gauge, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "deepthink_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

# Generation stages run for seconds to minutes
STAGE_LATENCY = Histogram(
    "deepthink_stage_seconds",
    "Wall time of one generation stage",
    labelnames=("stage", "outcome"),
    buckets=(0.1, 0.25, 0.5, 1, 2, 3, 5, 8, 13, 21, 34, 55, 89),
)

STAGE_TTFB = Histogram(
    "deepthink_stage_ttfb_seconds",
    "Time to first fragment of a generation stage",
    labelnames=("stage",),
    buckets=(0.05, 0.1, 0.2, 0.3, 0.5, 0.75, 1.0, 1.5, 2, 3, 5, 8, 13, 21),
)

STREAM_SESSIONS = Counter(
    "deepthink_stream_sessions_total",
    "Finished stream sessions by outcome",
    labelnames=("outcome",),
)

ACTIVE_STREAMS = Gauge(
    "deepthink_active_streams",
    "Stream sessions currently open",
)


def sanitize_path(path: str) -> str:
    """Reduce paths to their top-level segment to keep label cardinality low."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Never block the request due to metrics
            pass
        return response

    return middleware
