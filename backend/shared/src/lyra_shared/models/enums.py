"""Enumeration types for Lyra payment data models."""

from enum import Enum


class OrderState(str, Enum):
    """Lifecycle state of a storefront order."""

    ADDING_ITEMS = "AddingItems"
    ARRANGING_PAYMENT = "ArrangingPayment"
    PAYMENT_AUTHORIZED = "PaymentAuthorized"
    PAYMENT_SETTLED = "PaymentSettled"
    CANCELLED = "Cancelled"


class PaymentState(str, Enum):
    """Lifecycle state of a single payment attempt."""

    CREATED = "Created"
    AUTHORIZED = "Authorized"
    SETTLED = "Settled"
    DECLINED = "Declined"
    CANCELLED = "Cancelled"
    ERROR = "Error"


class LyraMode(str, Enum):
    """Lyra shop mode. Each mode has its own credentials."""

    TEST = "test"
    PRODUCTION = "production"


class HashKeyType(str, Enum):
    """Which secret the gateway used to sign kr-answer (kr-hash-key)."""

    PASSWORD = "password"  # IPN notifications
    SHA256_HMAC = "sha256_hmac"  # Browser returns


class IpnResult(str, Enum):
    """Outcome of processing one IPN delivery."""

    SETTLED = "settled"
    DECLINED = "declined"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


# Order states in which a new payment attempt may be started
PAYABLE_ORDER_STATES = frozenset(
    {OrderState.ADDING_ITEMS, OrderState.ARRANGING_PAYMENT}
)

# Payment states that may still receive a gateway outcome
PENDING_PAYMENT_STATES = frozenset({PaymentState.CREATED, PaymentState.AUTHORIZED})

# Payment states that are never reused for a new form token
UNUSABLE_PAYMENT_STATES = frozenset(
    {PaymentState.DECLINED, PaymentState.CANCELLED, PaymentState.ERROR}
)
