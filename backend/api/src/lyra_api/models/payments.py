"""API models for Lyra payment endpoints."""

from pydantic import BaseModel, ConfigDict, Field


class InitializePaymentRequest(BaseModel):
    """Request a Lyra form token for an order."""

    model_config = ConfigDict(
        strict=True,
        json_schema_extra={
            "examples": [
                {"order_code": "ORD-2026-0001"},
                {"order_code": "ORD-2026-0001", "force_new": True},
            ]
        },
    )

    order_code: str = Field(
        ...,
        min_length=1,
        description="Order to pay",
        examples=["ORD-2026-0001"],
    )
    force_new: bool = Field(
        default=False,
        description="Always request a new form token instead of reusing a recent one",
    )
