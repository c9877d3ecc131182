"""Lyra payment endpoints.

Provides REST endpoints for:
- Creating (or reusing) a form token for an order
- Handling the shopper's browser return from the embedded form
"""

import json
import os
from typing import Literal
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import ValidationError
from starlette.status import HTTP_303_SEE_OTHER

from lyra_api.dependencies import get_ipn_handler, get_payment_service
from lyra_api.models.payments import InitializePaymentRequest
from lyra_shared.models import HashKeyType, LyraAnswer, PaymentError
from lyra_shared.models.errors import ErrorResponse
from lyra_shared.services.ipn_handler import IpnHandler
from lyra_shared.services.payment_service import PaymentService, PaymentSession
from lyra_shared.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["payments"])

DEFAULT_FRONTEND_URL = "http://localhost:3000"


def _frontend_url() -> str:
    return os.environ.get("FRONTEND_URL", DEFAULT_FRONTEND_URL).rstrip("/")


def _parse_return_answer(kr_answer: str) -> LyraAnswer | None:
    try:
        data = json.loads(kr_answer)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        return LyraAnswer.model_validate(data)
    except ValidationError:
        return None


@router.post(
    "/payments/lyra/initialize",
    summary="Initialize Lyra payment",
    description="""
Create a Lyra form token for an order and move the order to ArrangingPayment.

A token issued in the last few minutes for the same amount and the same shop
credentials is reused unless `force_new` is set.
""",
    response_model=PaymentSession,
    responses={
        200: {"description": "Form token ready"},
        402: {"description": "Gateway refused to create the payment", "model": ErrorResponse},
        404: {"description": "Order not found", "model": ErrorResponse},
        409: {"description": "Order is not payable", "model": ErrorResponse},
        500: {"description": "Lyra is not configured", "model": ErrorResponse},
    },
)
async def initialize_lyra_payment(
    body: InitializePaymentRequest,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentSession:
    """Create or reuse a Lyra form token."""
    return service.initialize(body.order_code, force_new=body.force_new)


@router.post(
    "/payments/lyra/return/{outcome}",
    summary="Lyra browser return",
    description="""
Target of the embedded form's success/failure redirect. Verifies the kr-hash
(HMAC-SHA-256 key) and redirects the shopper to the storefront.

Never changes order or payment state; the IPN is authoritative. The order id
and status are only forwarded when the signature is valid.
""",
    response_class=RedirectResponse,
    status_code=HTTP_303_SEE_OTHER,
    responses={303: {"description": "Redirect to the storefront result page"}},
)
async def handle_lyra_return(
    outcome: Literal["success", "failure"],
    request: Request,
    handler: IpnHandler = Depends(get_ipn_handler),
) -> RedirectResponse:
    """Verify a browser return and redirect to the storefront."""
    raw_body = await request.body()
    fields = handler.extract_signed_fields(raw_body, request.headers.get("content-type"))

    verified = False
    answer: LyraAnswer | None = None
    if fields.is_complete:
        try:
            verified = handler.verify(fields, default_key_type=HashKeyType.SHA256_HMAC).verified
        except PaymentError as e:
            logger.warning("Browser return could not be verified: %s", e.code.value)
        if verified:
            answer = _parse_return_answer(fields.kr_answer or "")
        else:
            logger.warning("Browser return (%s) with invalid signature", outcome)

    params: dict[str, str] = {"verified": "true" if verified else "false"}
    if answer is not None:
        if answer.order_code:
            params["orderId"] = answer.order_code
        if answer.order_status:
            params["status"] = answer.order_status

    url = f"{_frontend_url()}/payments/lyra/browser-{outcome}?{urlencode(params)}"
    logger.info("Browser return %s: verified=%s order=%s", outcome, verified, params.get("orderId"))
    return RedirectResponse(url, status_code=HTTP_303_SEE_OTHER)
