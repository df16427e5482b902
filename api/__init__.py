"""HTTP layer: response envelope, error handlers, request ids, app factory."""

from api.base import (
    APIError,
    APIMeta,
    APIResponse,
    success_response,
    error_response,
    error_json,
    request_id_of,
    ErrorCodes,
)
