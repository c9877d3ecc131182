"""Models for Lyra IPN payloads and their audit log."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

PAID_ORDER_STATUS = "PAID"


class LyraOrderDetails(BaseModel):
    """orderDetails block of a kr-answer."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order_id: str | None = Field(default=None, alias="orderId")
    order_total_amount: int | None = Field(default=None, alias="orderTotalAmount")
    order_currency: str | None = Field(default=None, alias="orderCurrency")
    mode: str | None = Field(default=None, description="TEST or PRODUCTION")


class LyraTransaction(BaseModel):
    """One entry of the kr-answer transactions list."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uuid: str | None = None
    status: str | None = None
    detailed_status: str | None = Field(default=None, alias="detailedStatus")
    amount: int | None = None
    currency: str | None = None


class LyraAnswer(BaseModel):
    """Parsed kr-answer JSON document.

    Only the fields the service acts on are modelled; the rest is ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    shop_id: str | None = Field(default=None, alias="shopId")
    order_cycle: str | None = Field(default=None, alias="orderCycle")
    order_status: str | None = Field(default=None, alias="orderStatus")
    server_date: str | None = Field(default=None, alias="serverDate")
    order_details: LyraOrderDetails = Field(
        default_factory=LyraOrderDetails, alias="orderDetails"
    )
    transactions: list[LyraTransaction] = Field(default_factory=list)

    @property
    def order_code(self) -> str | None:
        return self.order_details.order_id

    @property
    def transaction_uuid(self) -> str | None:
        if not self.transactions:
            return None
        return self.transactions[0].uuid

    @property
    def is_paid(self) -> bool:
        return self.order_status == PAID_ORDER_STATUS


class SignedFields(BaseModel):
    """The signed fields of a gateway callback, exactly as received."""

    kr_answer: str | None = None
    kr_hash: str | None = None
    kr_hash_key: str | None = None
    kr_hash_algorithm: str | None = None
    kr_answer_type: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.kr_answer) and bool(self.kr_hash)


class IpnEvent(BaseModel):
    """Log of a received IPN delivery.

    Used for:
    - Idempotency: a redelivered notification is not processed twice
    - Auditing: every accepted delivery is recorded with its outcome
    """

    model_config = ConfigDict(strict=True)

    event_id: str = Field(
        ...,
        description="Received kr-hash; unique per signed answer",
        examples=["5b1f0c0e8f1f4c2b9e7a..."],
    )
    order_code: str = Field(..., description="orderDetails.orderId")
    transaction_uuid: str | None = Field(default=None, description="transactions[0].uuid")
    order_status: str | None = Field(default=None, description="orderStatus")
    payload_hash: str = Field(..., description="SHA-256 of kr-answer")
    processed_at: datetime = Field(..., description="When the delivery was processed")
    processing_result: str = Field(
        default="settled",
        description="settled, declined, duplicate, ignored or error",
    )
    payment_id: str | None = Field(default=None, description="Payment that was updated")
    error_message: str | None = Field(default=None)
