"""
CareBridge Backend — Access Log Middleware
============================================

What:  One log line per request on the `carebridge.access` logger.
How:   Level follows the status class: 5xx → ERROR, 4xx → WARNING, else INFO.
       The caller's account and role headers are logged; bodies never are,
       since they carry OTPs and payment details.

Example:
    POST /api/matching/4f1c.../sign/confirm 200 182.4ms [a1b2c3d4] elderly:acc-42 from 10.0.0.7
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from carebridge.middleware.request_id import request_id_var

logger = logging.getLogger("carebridge.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    # Probed every few seconds by the load balancer
    SILENT_PATHS = {"/health"}

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.SILENT_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        caller = "{}:{}".format(
            request.headers.get("X-Account-Role", "-"),
            request.headers.get("X-Account-ID", "-"),
        )

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] %s from %s",
            request.method,
            request.url.path,
            status,
            duration_ms,
            rid,
            caller,
            client_ip,
            extra={
                "request_id": rid,
                "status": status,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response
