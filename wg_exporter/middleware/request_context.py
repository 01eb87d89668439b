"""Request context middleware: assigns an ID to every request.

Prometheus usually scrapes from more than one server, and a slow `wg`
can make scrapes overlap.  Their log lines then interleave:

  WARNING Omitting interface wg1: interface 'wg1' not found
  WARNING Serving partial scrape: 1 interface(s) unreadable: wg1

The request ID ties each line to its scrape.  It lives in a ContextVar
rather than a thread-local: concurrent requests share the event loop
thread, but each asyncio task has its own context.  Work handed to
asyncio.to_thread() runs in a copy of that context, so lines logged by
the reader thread carry the same ID.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from wg_exporter.core.logging import request_id_var

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID, times the request and logs one summary line.

    The ID comes from the X-Request-ID header when the caller sent one,
    and is echoed back on the response.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(req_id)

        start = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
