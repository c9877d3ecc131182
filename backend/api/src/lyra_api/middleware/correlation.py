"""Correlation ID middleware.

Reuses a well-formed incoming X-Correlation-ID (or the API Gateway request
id when running under Mangum) and otherwise generates one. The ID is bound to
the logging context for the duration of the request and echoed back.
"""

import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from lyra_shared.utils.logging import clear_correlation_id, set_correlation_id

CORRELATION_ID_HEADER = "X-Correlation-ID"

_VALID_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _incoming_id(request: Request) -> str | None:
    candidate = request.headers.get(CORRELATION_ID_HEADER)
    if candidate is None:
        aws_event = request.scope.get("aws.event") or {}
        candidate = (aws_event.get("requestContext") or {}).get("requestId")
    if candidate and _VALID_ID.match(candidate):
        return candidate
    return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation ID to each request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = set_correlation_id(_incoming_id(request))
        request.state.correlation_id = correlation_id
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
