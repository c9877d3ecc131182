"""Standard error codes for the Lyra payment service.

Every domain failure raised by the services carries one of these codes so the
API layer can render a consistent error body and HTTP status.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Stable error codes exposed in API error responses."""

    # IPN / webhook error codes (ERR_IPN_001-ERR_IPN_004)
    MISSING_IPN_FIELDS = "ERR_IPN_001"
    MALFORMED_ANSWER = "ERR_IPN_002"
    INVALID_SIGNATURE = "ERR_IPN_003"
    UNSUPPORTED_HASH_ALGORITHM = "ERR_IPN_004"

    # Order/payment error codes (ERR_PAY_001-ERR_PAY_004)
    ORDER_NOT_FOUND = "ERR_PAY_001"
    PAYMENT_NOT_FOUND = "ERR_PAY_002"
    ORDER_NOT_PAYABLE = "ERR_PAY_003"
    PAYMENT_CREATION_FAILED = "ERR_PAY_004"

    # Configuration error codes
    CONFIGURATION_ERROR = "ERR_CONFIG_001"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.MISSING_IPN_FIELDS: "Missing kr-answer or kr-hash in notification",
    ErrorCode.MALFORMED_ANSWER: "The kr-answer payload could not be parsed",
    ErrorCode.INVALID_SIGNATURE: "Invalid notification signature",
    ErrorCode.UNSUPPORTED_HASH_ALGORITHM: "Unsupported kr-hash-algorithm",
    ErrorCode.ORDER_NOT_FOUND: "Order not found",
    ErrorCode.PAYMENT_NOT_FOUND: "No payment matches this transaction",
    ErrorCode.ORDER_NOT_PAYABLE: "Order is not in a payable state",
    ErrorCode.PAYMENT_CREATION_FAILED: "The payment gateway refused to create the payment",
    ErrorCode.CONFIGURATION_ERROR: "Lyra payment method is not configured",
}

# Recovery suggestions for operators and API clients
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.MISSING_IPN_FIELDS: "Check the IPN URL is configured for form POST notifications",
    ErrorCode.MALFORMED_ANSWER: "Inspect the raw notification in the gateway back office",
    ErrorCode.INVALID_SIGNATURE: "Verify the Lyra password and HMAC keys for every shop mode",
    ErrorCode.UNSUPPORTED_HASH_ALGORITHM: "Configure the shop to sign with sha256_hmac",
    ErrorCode.ORDER_NOT_FOUND: "Verify the order code sent to the gateway",
    ErrorCode.PAYMENT_NOT_FOUND: "Reinitialize the payment for this order",
    ErrorCode.ORDER_NOT_PAYABLE: "Return the order to AddingItems before paying",
    ErrorCode.PAYMENT_CREATION_FAILED: "Try again or use a different payment method",
    ErrorCode.CONFIGURATION_ERROR: "Set the Lyra parameters in SSM Parameter Store",
}


class ErrorResponse(BaseModel):
    """Standard error body returned by every endpoint."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
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
    """Exception raised by payment and IPN operations.

    Converted to an ErrorResponse by the API exception handlers.
    """

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse.from_code(self.code, self.details)


class StateTransitionError(Exception):
    """Raised when an order or payment transition is not allowed."""

    def __init__(self, entity: str, entity_id: str, from_state: str, to_state: str) -> None:
        super().__init__(
            f"Cannot transition {entity} {entity_id} from {from_state} to {to_state}"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state
