"""Order and payment models persisted in DynamoDB."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import OrderState, PaymentState

LYRA_PAYMENT_METHOD = "lyra-payment"

# Allowed state transitions. Anything not listed is refused.
ORDER_TRANSITIONS: dict[OrderState, frozenset[OrderState]] = {
    OrderState.ADDING_ITEMS: frozenset(
        {OrderState.ARRANGING_PAYMENT, OrderState.CANCELLED}
    ),
    OrderState.ARRANGING_PAYMENT: frozenset(
        {
            OrderState.ADDING_ITEMS,
            OrderState.PAYMENT_AUTHORIZED,
            OrderState.PAYMENT_SETTLED,
            OrderState.CANCELLED,
        }
    ),
    OrderState.PAYMENT_AUTHORIZED: frozenset(
        {OrderState.PAYMENT_SETTLED, OrderState.ADDING_ITEMS, OrderState.CANCELLED}
    ),
    OrderState.PAYMENT_SETTLED: frozenset(),
    OrderState.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentState, frozenset[PaymentState]] = {
    PaymentState.CREATED: frozenset(
        {
            PaymentState.AUTHORIZED,
            PaymentState.SETTLED,
            PaymentState.DECLINED,
            PaymentState.CANCELLED,
            PaymentState.ERROR,
        }
    ),
    PaymentState.AUTHORIZED: frozenset(
        {PaymentState.SETTLED, PaymentState.DECLINED, PaymentState.CANCELLED}
    ),
    PaymentState.SETTLED: frozenset(),
    PaymentState.DECLINED: frozenset(),
    PaymentState.CANCELLED: frozenset(),
    PaymentState.ERROR: frozenset(),
}


def can_transition_order(from_state: OrderState, to_state: OrderState) -> bool:
    """Check whether an order may move from one state to another."""
    return to_state in ORDER_TRANSITIONS[from_state]


def can_transition_payment(from_state: PaymentState, to_state: PaymentState) -> bool:
    """Check whether a payment may move from one state to another."""
    return to_state in PAYMENT_TRANSITIONS[from_state]


class Order(BaseModel):
    """A storefront order.

    Amounts are stored in minor currency units (cents).
    """

    order_code: str = Field(..., description="Public order code sent to the gateway")
    state: OrderState = Field(..., description="Order lifecycle state")
    active: bool = Field(default=True, description="False once the order is placed")
    currency_code: str = Field(default="EUR", description="ISO 4217 currency code")
    total_with_tax: int = Field(..., ge=0, description="Order total in minor units")
    customer_email: str | None = Field(default=None, description="Customer email")
    customer_id: str | None = Field(default=None, description="Customer reference")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last modification timestamp")


class Payment(BaseModel):
    """A payment attempt against an order."""

    payment_id: str = Field(..., description="Unique payment ID")
    order_code: str = Field(..., description="Reference to Order")
    method: str = Field(default=LYRA_PAYMENT_METHOD, description="Payment method code")
    amount: int = Field(..., ge=0, description="Amount in minor units")
    state: PaymentState = Field(..., description="Payment lifecycle state")
    transaction_id: str | None = Field(
        default=None,
        description="Gateway transaction uuid, bound when the IPN arrives",
        examples=["a3c4e1f29b7d4a0e8c5f6b1d2e3f4a5b"],
    )
    error_message: str | None = Field(default=None, description="Gateway error details")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Form-token configuration; 'public' is exposed to the storefront",
    )
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last modification timestamp")
    settled_at: datetime | None = Field(default=None, description="Settlement timestamp")

    @property
    def public_config(self) -> dict[str, Any] | None:
        """Public form-token config, or None if incomplete."""
        public = self.metadata.get("public")
        if not isinstance(public, dict):
            return None
        if not public.get("formToken") or not public.get("publicKey"):
            return None
        return public
