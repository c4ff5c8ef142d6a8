"""
NoteStudio Backend — Request ID Middleware
============================================

What:  Gives each request a short correlation id, exposed to the exception
       handlers' log lines and error bodies through a ContextVar and to
       clients through the X-Request-ID header.
How:   A client-supplied X-Request-ID is reused so the studio front end can
       quote the same id in its own error reports.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        # Not reset afterwards: the catch-all error handler runs outside this
        # middleware and still quotes the id
        request_id_var.set(rid)
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
