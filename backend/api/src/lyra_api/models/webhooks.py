"""API models for the Lyra IPN endpoint."""

from pydantic import BaseModel, Field

from lyra_shared.models.enums import IpnResult


class IpnResponse(BaseModel):
    """Acknowledgement returned to the gateway."""

    received: bool = True
    event_id: str | None = Field(default=None, description="Received kr-hash")
    order_code: str | None = None
    payment_id: str | None = None
    processing_result: IpnResult
    message: str | None = None
