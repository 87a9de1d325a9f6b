"""
Prometheus-style metrics endpoint.
"""
import time
from typing import Callable, Dict

from fastapi import APIRouter, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from chatserver.core.logging import get_logger
from chatserver.schemas.ingest import IngestionReport

logger = get_logger(__name__)

router = APIRouter(tags=["Metrics"])

# Simple in-memory metrics storage
_metrics = {
    "http_requests_total": {},  # {(method, path, status): count}
    "http_request_duration_seconds": {},  # {(method, path): [sum, count]}
    "ingest_runs_total": {},  # {state: count}
    "ingest_messages_total": {},  # {outcome: count}
    "ingest_statuses_total": {},  # {outcome: count}
    "realtime_events_total": {},  # {event: count}
    "startup_time": None,
}

INGEST_MESSAGE_OUTCOMES = {
    "created": "messages_created",
    "duplicate": "messages_duplicate",
}
INGEST_STATUS_OUTCOMES = {
    "applied": "statuses_applied",
    "deferred": "statuses_deferred",
    "replayed": "statuses_replayed",
}


def _increment(name: str, key, amount: int = 1) -> None:
    counter: Dict = _metrics[name]
    counter[key] = counter.get(key, 0) + amount


def record_request(method: str, path: str, status_code: int, duration: float) -> None:
    """Record an HTTP request metric."""
    _increment("http_requests_total", (method, path, status_code))

    totals = _metrics["http_request_duration_seconds"].setdefault((method, path), [0.0, 0])
    totals[0] += duration
    totals[1] += 1


def record_ingestion(report: IngestionReport) -> None:
    """Fold one ingestion run into the counters."""
    _increment("ingest_runs_total", report.state)
    for outcome, attribute in INGEST_MESSAGE_OUTCOMES.items():
        _increment("ingest_messages_total", outcome, getattr(report, attribute))
    for outcome, attribute in INGEST_STATUS_OUTCOMES.items():
        _increment("ingest_statuses_total", outcome, getattr(report, attribute))
    _increment("ingest_statuses_total", "unresolved", len(report.unresolved))


def record_event(event: str, count: int = 1) -> None:
    _increment("realtime_events_total", event, count)


def set_startup_time() -> None:
    """Record application startup time."""
    _metrics["startup_time"] = time.time()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route template rather than raw path keeps cardinality low
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)

        record_request(
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration=duration,
        )

        return response


def _counter_lines(name: str, help_text: str, label: str) -> list:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} counter"]
    for key, count in sorted(_metrics[name].items()):
        lines.append(f'{name}{{{label}="{key}"}} {count}')
    lines.append("")
    return lines


def generate_prometheus_metrics() -> str:
    """Generate Prometheus-format metrics output."""
    lines = []

    lines.append("# HELP app_info Application information")
    lines.append("# TYPE app_info gauge")
    lines.append('app_info{version="1.0.0"} 1')
    lines.append("")

    if _metrics["startup_time"]:
        lines.append("# HELP app_start_time_seconds Unix timestamp when the app started")
        lines.append("# TYPE app_start_time_seconds gauge")
        lines.append(f'app_start_time_seconds {_metrics["startup_time"]:.3f}')
        lines.append("")

    lines.append("# HELP http_requests_total Total number of HTTP requests")
    lines.append("# TYPE http_requests_total counter")
    for (method, path, status), count in _metrics["http_requests_total"].items():
        lines.append(f'http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}')
    lines.append("")

    lines.append("# HELP http_request_duration_seconds HTTP request duration in seconds")
    lines.append("# TYPE http_request_duration_seconds summary")
    for (method, path), (total, count) in _metrics["http_request_duration_seconds"].items():
        lines.append(f'http_request_duration_seconds_sum{{method="{method}",path="{path}"}} {total:.6f}')
        lines.append(f'http_request_duration_seconds_count{{method="{method}",path="{path}"}} {count}')
    lines.append("")

    lines.extend(_counter_lines("ingest_runs_total", "Ingestion runs by final state", "state"))
    lines.extend(_counter_lines("ingest_messages_total", "Message payloads ingested by outcome", "outcome"))
    lines.extend(_counter_lines("ingest_statuses_total", "Status payloads reconciled by outcome", "outcome"))
    lines.extend(_counter_lines("realtime_events_total", "Events broadcast to listeners", "event"))

    return "\n".join(lines)


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Returns metrics in Prometheus exposition format.",
    response_class=Response,
)
async def metrics() -> Response:
    """Prometheus-style metrics endpoint."""
    content = generate_prometheus_metrics()
    return Response(
        content=content,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
