"""Standard error codes for payment reconciliation.

Every failure that can reach an API caller is expressed as a PaymentError
carrying one of these codes. The API layer maps codes to HTTP statuses.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes for payment operations."""

    # Request errors
    VALIDATION_ERROR = "ERR_PAY_001"
    AMOUNT_OUT_OF_RANGE = "ERR_PAY_002"
    INVALID_REFERENCE = "ERR_PAY_003"

    # Order errors
    ORDER_NOT_FOUND = "ERR_ORDER_001"
    ALREADY_INITIALIZED = "ERR_ORDER_002"
    ORDER_NOT_PAYABLE = "ERR_ORDER_003"
    ORDER_NOT_CANCELLABLE = "ERR_ORDER_004"

    # Authentication / authorization errors
    AUTH_REQUIRED = "ERR_AUTH_001"
    UNAUTHORIZED = "ERR_AUTH_002"

    # Provider errors
    SIGNATURE_INVALID = "ERR_GATEWAY_001"
    GATEWAY_ERROR = "ERR_GATEWAY_002"
    GATEWAY_TIMEOUT = "ERR_GATEWAY_003"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_ERROR: "Request validation failed",
    ErrorCode.AMOUNT_OUT_OF_RANGE: "Payment amount is outside the allowed range",
    ErrorCode.INVALID_REFERENCE: "Transaction reference format is invalid",
    ErrorCode.ORDER_NOT_FOUND: "Order not found",
    ErrorCode.ALREADY_INITIALIZED: "Payment has already been initialized for this order",
    ErrorCode.ORDER_NOT_PAYABLE: "Order is not in a payable state",
    ErrorCode.ORDER_NOT_CANCELLABLE: "Order can no longer be cancelled",
    ErrorCode.AUTH_REQUIRED: "Authentication required to perform this action",
    ErrorCode.UNAUTHORIZED: "Unauthorized access to this order",
    ErrorCode.SIGNATURE_INVALID: "Invalid webhook signature",
    ErrorCode.GATEWAY_ERROR: "Payment provider returned an error",
    ErrorCode.GATEWAY_TIMEOUT: "Payment provider did not respond in time",
}

# Recovery suggestions for API clients
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_ERROR: "Check the request parameters and try again",
    ErrorCode.AMOUNT_OUT_OF_RANGE: "Use an amount within the configured minimum and maximum",
    ErrorCode.INVALID_REFERENCE: "Use the reference returned by payment initialization",
    ErrorCode.ORDER_NOT_FOUND: "Verify the order ID or payment reference",
    ErrorCode.ALREADY_INITIALIZED: "Verify the existing payment reference instead",
    ErrorCode.ORDER_NOT_PAYABLE: "Create a new order",
    ErrorCode.ORDER_NOT_CANCELLABLE: "Contact support for a refund",
    ErrorCode.AUTH_REQUIRED: "Log in and retry with a valid token",
    ErrorCode.UNAUTHORIZED: "Verify you own the order",
    ErrorCode.SIGNATURE_INVALID: "Verify webhook secret configuration",
    ErrorCode.GATEWAY_ERROR: "Try again or contact support",
    ErrorCode.GATEWAY_TIMEOUT: "Retry the request; it is safe to repeat",
}


class ErrorResponse(BaseModel):
    """Standard error response body for failed payment operations."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, Any]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class PaymentError(Exception):
    """Exception raised by payment operations.

    Converted to an ErrorResponse by the API exception handlers.
    """

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse.from_code(self.code, self.details)
