# propflow/middleware/structured_logging.py
from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..logging_config import request_id_ctx

log = logging.getLogger("propflow.request")

REQUEST_ID_HEADER = "X-Request-ID"


def _json_log(payload: dict) -> None:
    try:
        log.info(json.dumps(payload, default=str))
    except (TypeError, ValueError):
        log.info(str(payload))


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id and writes one log line when it finishes.

    The id comes from an incoming X-Request-ID header (header lookup is case
    insensitive) or a fresh uuid4. It is held in ``request_id_ctx`` for the
    life of the request, so error bodies and every log line written while
    handling it carry the same id, and it is echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        token = request_id_ctx.set(rid)
        request.state.request_id = rid

        t0 = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = rid
            return response
        finally:
            _json_log(
                {
                    "event": "http_request",
                    "request_id": rid,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "latency_ms": int((time.perf_counter() - t0) * 1000),
                }
            )
            request_id_ctx.reset(token)
