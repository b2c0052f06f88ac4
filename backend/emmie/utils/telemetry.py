"""
Telemetry and monitoring utilities.
"""
import logging
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import FastAPI, Response
import time

logger = logging.getLogger(__name__)

# Metrics definitions
request_count = Counter(
    'emmie_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'emmie_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

chat_messages = Counter(
    'emmie_chat_messages_total',
    'Persisted chat messages',
    ['role', 'message_type']
)

tool_usage = Counter(
    'emmie_tool_usage_total',
    'Function tool executions',
    ['tool_name', 'status']
)

routing_decisions = Counter(
    'emmie_routing_decisions_total',
    'Backend and model selected per chat turn',
    ['mode', 'model']
)

title_generations = Counter(
    'emmie_title_generations_total',
    'Chat title generation outcomes',
    ['outcome']
)

turn_duration = Histogram(
    'emmie_chat_turn_duration_seconds',
    'Chat turn duration from request to persisted answer',
    ['mode', 'stop_reason']
)


def setup_telemetry(app: FastAPI) -> None:
    """
    Setup telemetry and monitoring for the application.

    Args:
        app: FastAPI application instance
    """
    logger.info("Setting up telemetry...")

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.middleware("http")
    async def track_requests(request, call_next):
        """Track HTTP request metrics."""
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        request_count.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()

        request_duration.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(duration)

        return response

    logger.info("Telemetry setup complete")


def track_chat_message(role: str, message_type: str = "text") -> None:
    """Track a persisted chat message."""
    chat_messages.labels(role=role, message_type=message_type).inc()


def track_tool_usage(tool_name: str, status: str) -> None:
    """Track a function tool execution."""
    tool_usage.labels(tool_name=tool_name, status=status).inc()


def track_routing_decision(mode: str, model: str) -> None:
    routing_decisions.labels(mode=mode, model=model).inc()


def track_title_generation(outcome: str) -> None:
    title_generations.labels(outcome=outcome).inc()


def track_turn_duration(duration: float, mode: str, stop_reason: str) -> None:
    turn_duration.labels(mode=mode, stop_reason=stop_reason).observe(duration)


class MetricsCollector:
    """Collects and manages application metrics."""

    def __init__(self):
        self.start_time = time.time()
        self.message_count = 0
        self.error_count = 0

    def record_message(self, role: str, message_type: str = "text"):
        """Record a persisted chat message."""
        self.message_count += 1
        track_chat_message(role, message_type)

    def record_error(self):
        """Record an error."""
        self.error_count += 1

    def get_stats(self) -> dict:
        """Get current statistics."""
        uptime = time.time() - self.start_time

        return {
            "uptime_seconds": uptime,
            "messages_persisted": self.message_count,
            "errors": self.error_count,
            "messages_per_minute": (self.message_count / uptime) * 60 if uptime > 0 else 0
        }


# Global metrics collector
metrics_collector = MetricsCollector()
