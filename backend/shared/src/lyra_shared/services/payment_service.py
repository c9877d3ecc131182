"""Lyra payment initialisation.

Issues (or reuses) the form token the storefront needs to render the
embedded Lyra card form, and records the matching payment attempt.
"""

import datetime as dt
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from lyra_shared.models import (
    LYRA_PAYMENT_METHOD,
    ErrorCode,
    OrderState,
    Payment,
    PaymentError,
    PaymentState,
    StateTransitionError,
)
from lyra_shared.models.enums import PAYABLE_ORDER_STATES
from lyra_shared.utils.logging import log_payment_operation

from .form_token import (
    FORM_TOKEN_TTL,
    FormTokenContext,
    compute_fingerprint,
    extract_context,
    find_latest_reusable_payment,
    is_reusable,
    with_updated_context,
)
from .lyra_client import LyraClient, LyraServiceError
from .lyra_config import LyraConfigError, LyraCredentials

if TYPE_CHECKING:
    from .lyra_config import LyraConfigService
    from .order_service import OrderService

logger = logging.getLogger(__name__)


class PaymentSession(BaseModel):
    """Everything the storefront needs to render the Lyra form."""

    ok: bool = True
    form_token: str = Field(..., description="Lyra form token")
    public_key: str = Field(..., description="Shop public key for the JS client")
    script_base_url: str = Field(..., description="Krypton client script base URL")
    order_code: str
    payment_id: str
    reused: bool = Field(default=False, description="True if an existing token was returned")


def credentials_context(credentials: LyraCredentials) -> FormTokenContext:
    """Context identifying the credentials a new form token is issued under."""
    return FormTokenContext(
        mode=credentials.mode.value,
        fingerprint=compute_fingerprint(
            credentials.mode.value,
            credentials.endpoint,
            credentials.script_base_url,
            credentials.public_key,
            credentials.username,
        ),
    )


class PaymentService:
    """Creates Lyra payments for orders."""

    def __init__(
        self,
        orders: "OrderService",
        config: "LyraConfigService",
        client_factory: Callable[[LyraCredentials], LyraClient] = LyraClient,
    ) -> None:
        """Initialize payment service.

        Args:
            orders: Order and payment repository
            config: Lyra configuration
            client_factory: Builds a LyraClient for a credential set
        """
        self._orders = orders
        self._config = config
        self._client_factory = client_factory

    def _credentials(self) -> LyraCredentials:
        try:
            return self._config.get_credentials()
        except LyraConfigError as e:
            logger.error("Lyra credentials unavailable: %s", e)
            raise PaymentError(
                ErrorCode.CONFIGURATION_ERROR,
                details={"mode": self._config.active_mode.value},
            ) from e

    def _try_reuse(
        self,
        payments: list[Payment],
        amount: int,
        expected: FormTokenContext,
        now: dt.datetime,
    ) -> Payment | None:
        lyra_payments = [p for p in payments if p.method == LYRA_PAYMENT_METHOD]
        candidate = find_latest_reusable_payment(lyra_payments, now)
        if candidate is None or candidate.amount != amount:
            return None

        public = candidate.public_config or {}
        context = extract_context(candidate.metadata)
        expires_at = context.expires_at if context else None
        if not is_reusable(public.get("formToken"), expires_at, now, expected, candidate.metadata):
            return None
        return candidate

    def _decline_superseded(self, payments: list[Payment]) -> None:
        for payment in payments:
            if payment.method != LYRA_PAYMENT_METHOD or payment.state != PaymentState.CREATED:
                continue
            try:
                self._orders.transition_payment(
                    payment.payment_id,
                    PaymentState.DECLINED,
                    error_message="Superseded by a new form token",
                )
            except StateTransitionError as e:
                logger.warning("Could not decline superseded payment: %s", e)

    def initialize(
        self,
        order_code: str,
        force_new: bool = False,
        now: dt.datetime | None = None,
    ) -> PaymentSession:
        """Create or reuse a Lyra form token for an order.

        Args:
            order_code: Order to pay
            force_new: Always request a new form token
            now: Current time (defaults to UTC now)

        Returns:
            PaymentSession for the storefront.

        Raises:
            PaymentError: ORDER_NOT_FOUND, ORDER_NOT_PAYABLE,
                CONFIGURATION_ERROR or PAYMENT_CREATION_FAILED.
        """
        now = now or dt.datetime.now(dt.UTC)

        order = self._orders.get_order(order_code)
        if order is None:
            raise PaymentError(ErrorCode.ORDER_NOT_FOUND, details={"order_code": order_code})
        if order.state not in PAYABLE_ORDER_STATES:
            raise PaymentError(
                ErrorCode.ORDER_NOT_PAYABLE,
                details={"order_code": order_code, "state": order.state.value},
            )

        credentials = self._credentials()
        expected = credentials_context(credentials)
        amount = order.total_with_tax
        payments = self._orders.get_payments_for_order(order_code)

        if not force_new:
            reusable = self._try_reuse(payments, amount, expected, now)
            if reusable is not None:
                self._orders.transition_order(order_code, OrderState.ARRANGING_PAYMENT)
                public = reusable.public_config or {}
                log_payment_operation(
                    logger,
                    "reuse_form_token",
                    payment_id=reusable.payment_id,
                    order_code=order_code,
                    amount=amount,
                )
                return PaymentSession(
                    form_token=public["formToken"],
                    public_key=public["publicKey"],
                    script_base_url=public.get("scriptBaseUrl") or credentials.script_base_url,
                    order_code=order_code,
                    payment_id=reusable.payment_id,
                    reused=True,
                )

        self._decline_superseded(payments)

        try:
            self._orders.transition_order(order_code, OrderState.ARRANGING_PAYMENT)
        except StateTransitionError as e:
            raise PaymentError(
                ErrorCode.ORDER_NOT_PAYABLE, details={"order_code": order_code}
            ) from e

        client = self._client_factory(credentials)
        try:
            result = client.create_payment(order, amount)
        except LyraServiceError as e:
            declined = self._orders.add_payment(
                order_code, amount, PaymentState.DECLINED, error_message=str(e)
            )
            log_payment_operation(
                logger,
                "create_payment",
                payment_id=declined.payment_id,
                order_code=order_code,
                amount=amount,
                error=str(e),
                lyra_error_code=e.lyra_error_code,
            )
            raise PaymentError(
                ErrorCode.PAYMENT_CREATION_FAILED, details={"message": str(e)}
            ) from e

        context = expected.model_copy(
            update={"generated_at": now, "expires_at": now + FORM_TOKEN_TTL}
        )
        metadata = with_updated_context(
            {
                "public": {
                    "formToken": result.form_token,
                    "publicKey": credentials.public_key,
                    "scriptBaseUrl": credentials.script_base_url,
                }
            },
            context,
        )
        payment = self._orders.add_payment(
            order_code, amount, PaymentState.CREATED, metadata=metadata
        )

        return PaymentSession(
            form_token=result.form_token,
            public_key=credentials.public_key,
            script_base_url=credentials.script_base_url,
            order_code=order_code,
            payment_id=payment.payment_id,
            reused=False,
        )
