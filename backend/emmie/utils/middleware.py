"""
Custom middleware for request processing.
"""
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import json
import time
import uuid
import logging
from typing import Callable

from ..config import settings

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Add request ID to request state and response headers."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        logger.info(f"Request started: {request.method} {request.url.path} [{request_id}]")

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Add request timing information."""

    def __init__(self, app, slow_threshold: float = 1.0):
        super().__init__(app)
        self.slow_threshold = slow_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Measure and log request processing time."""
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        # Streamed chat turns are expected to be slow
        streamed = response.headers.get("content-type", "").startswith("text/event-stream")
        if process_time > self.slow_threshold and not streamed:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time:.2f}s"
            )

        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last-resort error envelope for exceptions that escape the routes."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except Exception as e:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.error(
                f"Unhandled exception in request {request_id}: {str(e)}",
                exc_info=True
            )

            return Response(
                content=json.dumps({
                    "error": "Internal server error",
                    "message": str(e) if settings.debug else "An unexpected error occurred",
                    "request_id": request_id
                }),
                status_code=500,
                headers={"Content-Type": "application/json"}
            )
