"""Lyra REST API client.

Creates form tokens through the V4 ``Charge/CreatePayment`` endpoint using
HTTP Basic authentication (shop id and API password).
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from lyra_shared.models import Order

from .lyra_config import LyraCredentials

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
SUCCESS_STATUS = "SUCCESS"


class LyraServiceError(Exception):
    """Raised when a Lyra API call fails."""

    def __init__(self, message: str, lyra_error_code: str | None = None) -> None:
        """Initialize with message and optional Lyra error code.

        Args:
            message: Human-readable error message.
            lyra_error_code: Lyra errorCode if available.
        """
        super().__init__(message)
        self.lyra_error_code = lyra_error_code


@dataclass(frozen=True)
class FormTokenResult:
    """A form token issued by Lyra."""

    form_token: str


def _error_from_answer(answer: Any, default: str) -> LyraServiceError:
    if not isinstance(answer, dict):
        return LyraServiceError(default)
    return LyraServiceError(
        answer.get("errorMessage") or default,
        lyra_error_code=answer.get("errorCode"),
    )


class LyraClient:
    """Client for the Lyra V4 REST API.

    Usage:
        client = LyraClient(config.get_credentials())
        token = client.create_payment(order, order.total_with_tax)
    """

    def __init__(
        self,
        credentials: LyraCredentials,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            credentials: Shop credentials and endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.credentials = credentials
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.credentials.endpoint,
            auth=httpx.BasicAuth(self.credentials.username, self.credentials.password),
            timeout=self._timeout,
            transport=self._transport,
        )

    @staticmethod
    def build_payment_payload(order: Order, amount: int) -> dict[str, Any]:
        """Build the CreatePayment request body for an order."""
        customer: dict[str, Any] = {}
        if order.customer_email:
            customer["email"] = order.customer_email
        if order.customer_id:
            customer["reference"] = order.customer_id

        return {
            "amount": amount,
            "currency": order.currency_code,
            "orderId": order.order_code,
            "customer": customer,
            "paymentConfig": {"actionType": "AUTHORIZE", "singleAmount": amount},
            "metadata": {"orderCode": order.order_code},
        }

    def create_payment(self, order: Order, amount: int) -> FormTokenResult:
        """Request a form token for an order.

        Args:
            order: Order being paid
            amount: Amount in minor units

        Returns:
            FormTokenResult with the issued form token.

        Raises:
            LyraServiceError: If the gateway refuses or cannot be reached.
        """
        payload = self.build_payment_payload(order, amount)
        logger.info(
            "Creating Lyra payment for order %s (%s %s, mode=%s)",
            order.order_code,
            amount,
            order.currency_code,
            self.credentials.mode.value,
        )

        try:
            with self._client() as client:
                response = client.post("Charge/CreatePayment", json=payload)
        except httpx.HTTPError as e:
            logger.error("Lyra CreatePayment request failed: %s", e)
            raise LyraServiceError(f"Lyra API unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise LyraServiceError(
                f"Lyra API returned non-JSON response ({response.status_code})"
            ) from e

        answer = data.get("answer") if isinstance(data, dict) else None
        status = data.get("status") if isinstance(data, dict) else None

        if response.status_code >= 400:
            raise _error_from_answer(
                answer, f"Lyra API request failed ({response.status_code})"
            )
        if status != SUCCESS_STATUS or not isinstance(answer, dict):
            raise _error_from_answer(answer, "Lyra payment creation failed")

        form_token = answer.get("formToken")
        if not form_token:
            raise LyraServiceError("Lyra response did not include a formToken")

        return FormTokenResult(form_token=form_token)
