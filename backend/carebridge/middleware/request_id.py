"""
CareBridge Backend — Request ID Middleware
============================================

What:  Binds a correlation ID to every request and echoes it in X-Request-ID.
How:   Reuses the caller's X-Request-ID when present (the upstream gateway
       forwards its own), otherwise generates a short UUID prefix. The ID is
       kept in a ContextVar so exception handlers and loggers can read it.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests share a thread
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
