"""
HTTP middleware for DriveLink.

Request ids and per-request timing logs.
"""

import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

USER_ID_HEADER = "Mattermost-User-Id"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request id to every request and response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of each request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        logger.info(
            "Request processed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration * 1000, 2),
                "request_id": getattr(request.state, "request_id", "unknown"),
                # Webhook deliveries carry the user in the query string
                "user_id": request.headers.get(USER_ID_HEADER) or request.query_params.get("userID") or "anonymous",
            },
        )
        return response
