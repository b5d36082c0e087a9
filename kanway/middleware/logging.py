"""Request/response logging middleware"""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 2.0


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request and one per response"""

    def __init__(self, app, log_requests: bool = True, log_responses: bool = True):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = getattr(request.state, "request_id", "unknown")

        if self.log_requests:
            logger.info(
                "Incoming request",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "client_host": request.client.host if request.client else "unknown",
                },
            )

        response: Response = await call_next(request)
        process_time = time.perf_counter() - start_time

        if self.log_responses:
            self._log_response(request, response, process_time, request_id)

        response.headers["X-Process-Time"] = str(round(process_time, 4))
        return response

    def _log_response(self, request: Request, response: Response, process_time: float, request_id: str) -> None:
        details = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "process_time": round(process_time, 4),
        }
        logger.info("Request completed", extra=details)

        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning("Slow request detected", extra=details)
