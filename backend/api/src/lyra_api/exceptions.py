"""FastAPI exception handlers for converting PaymentError to HTTP responses.

The ErrorCode-to-HTTP status mapping follows REST conventions:
- 400 Bad Request: Malformed notifications
- 402 Payment Required: Gateway refused the payment
- 403 Forbidden: Signature verification failed
- 404 Not Found: Unknown order or payment
- 409 Conflict: Order state does not allow the operation
- 500 Internal Server Error: Missing configuration

Usage:
    Register handlers in FastAPI app:

    from lyra_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_402_PAYMENT_REQUIRED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from lyra_shared.models.errors import ErrorCode, PaymentError
from lyra_shared.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)

INTERNAL_ERROR_CODE = "ERR_INTERNAL"

# Map ErrorCode to HTTP status codes
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Malformed notifications -> 400 Bad Request
    ErrorCode.MISSING_IPN_FIELDS: HTTP_400_BAD_REQUEST,
    ErrorCode.MALFORMED_ANSWER: HTTP_400_BAD_REQUEST,
    ErrorCode.UNSUPPORTED_HASH_ALGORITHM: HTTP_400_BAD_REQUEST,
    # Authentication -> 403 Forbidden
    ErrorCode.INVALID_SIGNATURE: HTTP_403_FORBIDDEN,
    # Not found errors -> 404 Not Found
    ErrorCode.ORDER_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.PAYMENT_NOT_FOUND: HTTP_404_NOT_FOUND,
    # State conflicts -> 409 Conflict
    ErrorCode.ORDER_NOT_PAYABLE: HTTP_409_CONFLICT,
    # Payment errors -> 402 Payment Required
    ErrorCode.PAYMENT_CREATION_FAILED: HTTP_402_PAYMENT_REQUIRED,
    # Configuration -> 500 (server-side issue)
    ErrorCode.CONFIGURATION_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode.

    Args:
        code: The ErrorCode to map

    Returns:
        HTTP status code, defaults to 400 if not explicitly mapped.
    """
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    """Convert a PaymentError to a JSON ErrorResponse with the mapped status."""
    status_code = get_http_status_for_error(exc.code)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code.value)

    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with a generic error response.

    Args:
        request: The incoming request
        exc: The uncaught exception

    Returns:
        JSONResponse with 500 status and generic error message.
    """
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)

    # Only the correlation ID is exposed; operators find the cause in the logs
    correlation_id = getattr(request.state, "correlation_id", None) or get_correlation_id()
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": INTERNAL_ERROR_CODE,
            "message": "An unexpected error occurred",
            "recovery": "The gateway retries notifications; check the service logs",
            "details": {"correlation_id": correlation_id} if correlation_id else None,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(PaymentError, payment_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
