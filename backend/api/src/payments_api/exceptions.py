"""FastAPI exception handlers for converting PaymentError to HTTP responses.

This module provides exception handlers that convert domain errors
(PaymentError) to HTTP responses with the ErrorResponse JSON structure.

The ErrorCode-to-HTTP status mapping:
- 400 Bad Request: Validation, amount range, reference shape
- 401 Unauthorized: Missing identity or invalid webhook signature
- 403 Forbidden: Order belongs to another user
- 404 Not Found: Unknown order or reference
- 409 Conflict: Order state does not allow the operation
- 502 Bad Gateway / 504 Gateway Timeout: Payment provider failures

Usage:
    from payments_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_504_GATEWAY_TIMEOUT,
)

from payments.models.errors import ErrorCode, ErrorResponse, PaymentError

logger = logging.getLogger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Input errors -> 400 Bad Request
    ErrorCode.VALIDATION_ERROR: HTTP_400_BAD_REQUEST,
    ErrorCode.AMOUNT_OUT_OF_RANGE: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_REFERENCE: HTTP_400_BAD_REQUEST,
    # Authentication errors -> 401 Unauthorized
    ErrorCode.AUTH_REQUIRED: HTTP_401_UNAUTHORIZED,
    ErrorCode.SIGNATURE_INVALID: HTTP_401_UNAUTHORIZED,
    # Authorization errors -> 403 Forbidden
    ErrorCode.UNAUTHORIZED: HTTP_403_FORBIDDEN,
    # Not found -> 404
    ErrorCode.ORDER_NOT_FOUND: HTTP_404_NOT_FOUND,
    # Order state conflicts -> 409
    ErrorCode.ALREADY_INITIALIZED: HTTP_409_CONFLICT,
    ErrorCode.ORDER_NOT_PAYABLE: HTTP_409_CONFLICT,
    ErrorCode.ORDER_NOT_CANCELLABLE: HTTP_409_CONFLICT,
    # Provider errors
    ErrorCode.GATEWAY_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.GATEWAY_TIMEOUT: HTTP_504_GATEWAY_TIMEOUT,
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
    """Convert PaymentError to a JSON response with the mapped status code."""
    status_code = get_http_status_for_error(exc.code)
    if status_code >= 500:
        logger.error(
            "Payment request failed: %s %s -> %s",
            request.method,
            request.url.path,
            exc.code.value,
        )

    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request validation failures as VALIDATION_ERROR (HTTP 400).

    Args:
        request: The incoming request
        exc: FastAPI validation error

    Returns:
        JSONResponse with per-field errors in details.
    """
    errors: list[dict[str, Any]] = [
        {
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    error_response = ErrorResponse.from_code(
        ErrorCode.VALIDATION_ERROR,
        details={"errors": jsonable_encoder(errors)},
    )
    return JSONResponse(
        status_code=HTTP_400_BAD_REQUEST,
        content=error_response.model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without exposing internal details."""
    logger.exception("Unhandled exception: %s", exc)

    error_response = {
        "success": False,
        "error_code": "ERR_INTERNAL",
        "message": "An unexpected error occurred",
        "recovery": "Please try again later or contact support",
        "details": None,
    }

    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(PaymentError, payment_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
