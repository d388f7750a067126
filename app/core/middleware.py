"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a correlation id so rate limit decisions
logged by the engine can be tied back to the HTTP call that triggered them.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id

DURATION_HEADER = "X-Request-Duration-ms"


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request id for the duration of the request.

    Reuses the incoming id header (``LOG_REQUEST_ID_HEADER``, default
    ``X-Request-ID``) or generates a UUID4, exposes it through contextvars
    while the handler runs, and echoes it on the response together with the
    handling time in milliseconds.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with id and duration headers.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())

    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(DURATION_HEADER, f"{(time.perf_counter() - start) * 1000:.2f}")
    return response
