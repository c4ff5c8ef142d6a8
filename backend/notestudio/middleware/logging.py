"""
NoteStudio Backend — Access Log Middleware
============================================

One line per HTTP request on the "notestudio.access" logger. Generation
requests can take tens of seconds, so the duration is the quickest way to
tell a slow model from a slow database.

Bodies are never logged: they hold the user's notes and audio. /health and
the long-lived task stream are skipped.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from notestudio.middleware.request_id import request_id_var

logger = logging.getLogger("notestudio.access")

_QUIET_PATHS = {"/health", "/api/tasks/stream"}


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)

        logger.log(
            _level_for(response.status_code),
            "[%s] %s %s -> %d in %.0fms",
            request_id_var.get(),
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response
