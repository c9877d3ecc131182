"""Pydantic models for Lyra payment data entities."""

from .enums import (
    HashKeyType,
    IpnResult,
    LyraMode,
    OrderState,
    PaymentState,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    ErrorCode,
    ErrorResponse,
    PaymentError,
    StateTransitionError,
)
from .ipn import IpnEvent, LyraAnswer, LyraOrderDetails, LyraTransaction, SignedFields
from .order import LYRA_PAYMENT_METHOD, Order, Payment

__all__ = [
    # Enums
    "HashKeyType",
    "IpnResult",
    "LyraMode",
    "OrderState",
    "PaymentState",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "ErrorCode",
    "ErrorResponse",
    "PaymentError",
    "StateTransitionError",
    # IPN
    "IpnEvent",
    "LyraAnswer",
    "LyraOrderDetails",
    "LyraTransaction",
    "SignedFields",
    # Orders
    "LYRA_PAYMENT_METHOD",
    "Order",
    "Payment",
]
