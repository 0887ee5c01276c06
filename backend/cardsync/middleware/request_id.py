"""
CardSync Pro Backend — Request ID Middleware
=============================================

What:  Assigns a short correlation ID to each request and echoes it back.
Why:   Every log line and every error body of one request share the ID, so a
       user-reported error can be found in the logs.
How:   Client-supplied X-Request-ID is reused; otherwise a new one is made.
       The ID lives in a ContextVar (read by RequestIDFilter and the
       exception handlers) and in request.state.
"""

import logging
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one thread each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


class RequestIDFilter(logging.Filter):
    """Stamps every log record with the current request ID (or "-")."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get("") or "-"
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "")[:MAX_CLIENT_ID_LENGTH] or str(uuid.uuid4())[:8]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
