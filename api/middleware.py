"""Request-scoped middleware for API requests."""

import re
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

REQUEST_ID_HEADER = "X-Request-ID"

# Accept upstream IDs only if they look like an opaque token
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,128}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID to every request, reusing a well-formed inbound one.

    The ID is exposed as request.state.request_id (used in response meta)
    and echoed in the X-Request-ID response header.
    """

    async def dispatch(self, request: Request, call_next):
        inbound = request.headers.get(REQUEST_ID_HEADER)
        request_id = inbound if inbound and _VALID_REQUEST_ID.match(inbound) else str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
