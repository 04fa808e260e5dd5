"""Request tracing for the load estimator API."""
import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.services.logging_config import request_id_var

logger = logging.getLogger("elc-api.middleware")

SKIP_LOG_PATHS = {"/health"}


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an X-Request-ID (the caller's, or a fresh uuid4)
    that also stamps every pipeline log line emitted while serving it, adds
    X-Process-Time in milliseconds and logs one line per request.

    For streamed responses the duration covers time to first byte only.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            request_id_var.reset(token)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if request.url.path in SKIP_LOG_PATHS:
            return response
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} in {duration_ms} ms",
            extra={
                "http_method": request.method,
                "http_path": request.url.path,
                "http_status": response.status_code,
                "request_id": request_id,
                "duration_ms": duration_ms,
            },
        )
        return response
