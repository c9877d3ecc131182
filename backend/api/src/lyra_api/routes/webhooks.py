"""Webhook endpoint for Lyra Instant Payment Notifications.

These endpoints do NOT require authentication as they receive payloads
signed by the gateway; the kr-hash signature is verified before any state
is touched.
"""

from fastapi import APIRouter, Depends, Request

from lyra_api.dependencies import get_ipn_handler
from lyra_api.models.webhooks import IpnResponse
from lyra_shared.models.errors import ErrorResponse
from lyra_shared.services.ipn_handler import IpnHandler
from lyra_shared.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post(
    "/payments/lyra-ipn",
    summary="Receive Lyra IPN",
    description="""
Endpoint for Lyra Instant Payment Notifications.

The body is read raw and the signed fields (`kr-answer`, `kr-hash`,
`kr-hash-key`, `kr-hash-algorithm`) are extracted without re-serialisation,
then the HMAC-SHA256 signature is verified against every configured shop mode.

- `orderStatus = PAID`: the payment is settled and the order moves to PaymentSettled
- any other status: the payment is declined and the order returns to AddingItems

**Idempotent**: a redelivered notification (same kr-hash) returns 200 with
`duplicate` and changes nothing.
""",
    response_model=IpnResponse,
    responses={
        200: {"description": "Notification processed or acknowledged", "model": IpnResponse},
        400: {"description": "Missing fields or malformed kr-answer", "model": ErrorResponse},
        403: {"description": "Invalid signature", "model": ErrorResponse},
        404: {"description": "Unknown order or payment", "model": ErrorResponse},
        500: {"description": "Configuration or internal error", "model": ErrorResponse},
    },
)
async def handle_lyra_ipn(
    request: Request,
    handler: IpnHandler = Depends(get_ipn_handler),
) -> IpnResponse:
    """Verify and process a Lyra IPN delivery."""
    raw_body = await request.body()
    outcome = handler.handle(raw_body, request.headers.get("content-type"))

    return IpnResponse(
        event_id=outcome.event_id,
        order_code=outcome.order_code,
        payment_id=outcome.payment_id,
        processing_result=outcome.result,
        message=outcome.message,
    )
