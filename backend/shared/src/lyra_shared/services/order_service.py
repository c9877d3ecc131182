"""Order and payment persistence with state-machine enforcement.

Every state change is a conditional DynamoDB update on the current state, so
two concurrent callbacks cannot both move the same payment.
"""

import datetime as dt
import logging
import uuid
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr, Key

from lyra_shared.models import (
    LYRA_PAYMENT_METHOD,
    Order,
    OrderState,
    Payment,
    PaymentState,
    StateTransitionError,
)
from lyra_shared.models.enums import PENDING_PAYMENT_STATES
from lyra_shared.models.order import can_transition_order, can_transition_payment
from lyra_shared.utils.logging import log_payment_operation

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def _to_item(model: Any) -> dict[str, Any]:
    """Serialize a model for DynamoDB.

    Timestamps use isoformat() so they sort consistently with the values
    written by update expressions. GSI key attributes must be absent rather
    than NULL, so None values are dropped.
    """
    item = model.model_dump(mode="json")
    for name, value in model:
        if isinstance(value, dt.datetime):
            item[name] = value.isoformat()
    return {k: v for k, v in item.items() if v is not None}


class OrderService:
    """Repository for orders and their payments."""

    ORDERS_TABLE = "orders"
    PAYMENTS_TABLE = "payments"
    STATE_INDEX = "state-index"
    ORDER_INDEX = "order-index"
    TRANSACTION_INDEX = "transaction-index"

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize order service.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def _generate_payment_id(self) -> str:
        return f"PAY-{uuid.uuid4().hex[:12].upper()}"

    # Conversions

    def _order_to_item(self, order: Order) -> dict[str, Any]:
        return _to_item(order)

    def _item_to_order(self, item: dict[str, Any]) -> Order:
        return Order.model_validate(item)

    def _payment_to_item(self, payment: Payment) -> dict[str, Any]:
        return _to_item(payment)

    def _item_to_payment(self, item: dict[str, Any]) -> Payment:
        return Payment.model_validate(item)

    # Orders

    def create_order(self, order: Order) -> Order:
        """Store a new order.

        Raises:
            ValueError: If an order with the same code already exists.
        """
        created = self.db.put_item(
            self.ORDERS_TABLE,
            self._order_to_item(order),
            condition_expression="attribute_not_exists(order_code)",
        )
        if not created:
            raise ValueError(f"Order {order.order_code} already exists")
        return order

    def get_order(self, order_code: str) -> Order | None:
        """Get an order by its code."""
        item = self.db.get_item(self.ORDERS_TABLE, {"order_code": order_code})
        return self._item_to_order(item) if item else None

    def transition_order(self, order_code: str, to_state: OrderState) -> Order:
        """Move an order to a new state.

        A transition to the current state is a no-op.

        Raises:
            ValueError: If the order does not exist.
            StateTransitionError: If the transition is not allowed, or the
                order changed state concurrently.
        """
        order = self.get_order(order_code)
        if order is None:
            raise ValueError(f"Order {order_code} not found")
        if order.state == to_state:
            return order
        if not can_transition_order(order.state, to_state):
            raise StateTransitionError("order", order_code, order.state.value, to_state.value)

        attrs = self.db.update_item(
            self.ORDERS_TABLE,
            {"order_code": order_code},
            "SET #state = :to, updated_at = :now",
            {
                ":to": to_state.value,
                ":from": order.state.value,
                ":now": _utcnow().isoformat(),
            },
            {"#state": "state"},  # state is reserved word
            condition_expression="#state = :from",
        )
        if attrs is None:
            raise StateTransitionError("order", order_code, order.state.value, to_state.value)

        logger.info("Order %s: %s -> %s", order_code, order.state.value, to_state.value)
        return self._item_to_order(attrs)

    def find_stuck_orders(self, cutoff: dt.datetime, limit: int) -> list[Order]:
        """Active ArrangingPayment orders not updated since cutoff, oldest first.

        Args:
            cutoff: Orders updated at or after this instant are skipped
            limit: Maximum number of orders to return
        """
        items = self.db.query(
            self.ORDERS_TABLE,
            Key("state").eq(OrderState.ARRANGING_PAYMENT.value)
            & Key("updated_at").lt(cutoff.isoformat()),
            index_name=self.STATE_INDEX,
            filter_expression=Attr("active").eq(True),
            limit=limit,
            scan_index_forward=True,
        )
        return [self._item_to_order(item) for item in items]

    # Payments

    def get_payment(self, payment_id: str) -> Payment | None:
        """Get a payment by ID."""
        item = self.db.get_item(self.PAYMENTS_TABLE, {"payment_id": payment_id})
        return self._item_to_payment(item) if item else None

    def get_payments_for_order(self, order_code: str) -> list[Payment]:
        """All payments of an order, oldest first."""
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE, self.ORDER_INDEX, "order_code", order_code
        )
        payments = [self._item_to_payment(item) for item in items]
        return sorted(payments, key=lambda p: p.created_at)

    def find_payment_by_transaction(
        self, order_code: str, transaction_id: str
    ) -> Payment | None:
        """Find the payment of an order bound to a gateway transaction uuid."""
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE,
            self.TRANSACTION_INDEX,
            "transaction_id",
            transaction_id,
            filter_expression=Attr("order_code").eq(order_code),
        )
        if not items:
            return None
        return self._item_to_payment(items[0])

    def find_pending_payment(self, order_code: str) -> Payment | None:
        """Most recent Lyra payment still waiting for a gateway outcome.

        Only payments not yet bound to a transaction qualify.
        """
        for payment in reversed(self.get_payments_for_order(order_code)):
            if (
                payment.method == LYRA_PAYMENT_METHOD
                and payment.state in PENDING_PAYMENT_STATES
                and payment.transaction_id is None
            ):
                return payment
        return None

    def add_payment(
        self,
        order_code: str,
        amount: int,
        state: PaymentState,
        *,
        metadata: dict[str, Any] | None = None,
        transaction_id: str | None = None,
        error_message: str | None = None,
    ) -> Payment:
        """Create a payment record for an order."""
        now = _utcnow()
        payment = Payment(
            payment_id=self._generate_payment_id(),
            order_code=order_code,
            amount=amount,
            state=state,
            transaction_id=transaction_id,
            error_message=error_message,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        self.db.put_item(self.PAYMENTS_TABLE, self._payment_to_item(payment))

        log_payment_operation(
            logger,
            "add_payment",
            payment_id=payment.payment_id,
            order_code=order_code,
            amount=amount,
            state=state.value,
        )
        return payment

    def bind_transaction(self, payment_id: str, transaction_id: str) -> Payment:
        """Record the gateway transaction uuid on a payment.

        Raises:
            StateTransitionError: If the payment is already bound to another
                transaction.
        """
        attrs = self.db.update_item(
            self.PAYMENTS_TABLE,
            {"payment_id": payment_id},
            "SET transaction_id = :tx, updated_at = :now",
            {":tx": transaction_id, ":now": _utcnow().isoformat()},
            condition_expression="attribute_not_exists(transaction_id) OR transaction_id = :tx",
        )
        if attrs is None:
            raise StateTransitionError("payment", payment_id, "bound", f"bound:{transaction_id}")
        return self._item_to_payment(attrs)

    def transition_payment(
        self,
        payment_id: str,
        to_state: PaymentState,
        *,
        error_message: str | None = None,
    ) -> Payment:
        """Move a payment to a new state.

        Raises:
            ValueError: If the payment does not exist.
            StateTransitionError: If the transition is not allowed, or the
                payment changed state concurrently.
        """
        payment = self.get_payment(payment_id)
        if payment is None:
            raise ValueError(f"Payment {payment_id} not found")
        if not can_transition_payment(payment.state, to_state):
            raise StateTransitionError(
                "payment", payment_id, payment.state.value, to_state.value
            )

        now = _utcnow().isoformat()
        update = "SET #state = :to, updated_at = :now"
        values: dict[str, Any] = {
            ":to": to_state.value,
            ":from": payment.state.value,
            ":now": now,
        }
        if to_state == PaymentState.SETTLED:
            update += ", settled_at = :now"
        if error_message:
            update += ", error_message = :err"
            values[":err"] = error_message

        attrs = self.db.update_item(
            self.PAYMENTS_TABLE,
            {"payment_id": payment_id},
            update,
            values,
            {"#state": "state"},
            condition_expression="#state = :from",
        )
        if attrs is None:
            raise StateTransitionError(
                "payment", payment_id, payment.state.value, to_state.value
            )

        log_payment_operation(
            logger,
            "transition_payment",
            payment_id=payment_id,
            order_code=payment.order_code,
            state=to_state.value,
            previous_state=payment.state.value,
        )
        return self._item_to_payment(attrs)

    def settle_payment(self, payment: Payment) -> tuple[Payment, Order | None]:
        """Settle a payment and move its order to PaymentSettled.

        Returns:
            Tuple of (settled payment, updated order or None if the order
            could not be moved)
        """
        settled = self.transition_payment(payment.payment_id, PaymentState.SETTLED)

        # An order already unlocked by the stuck-order sweep goes back
        # through ArrangingPayment before settling.
        current = self.get_order(payment.order_code)
        if current is not None and current.state == OrderState.ADDING_ITEMS:
            if self._move_order(payment.order_code, OrderState.ARRANGING_PAYMENT) is None:
                return settled, None

        order = self._move_order(payment.order_code, OrderState.PAYMENT_SETTLED)
        return settled, order

    def decline_payment(
        self, payment: Payment, error_message: str | None = None
    ) -> tuple[Payment, Order | None]:
        """Decline a payment and return its order to AddingItems.

        Returns:
            Tuple of (declined payment, updated order or None if the order
            could not be moved)
        """
        declined = self.transition_payment(
            payment.payment_id, PaymentState.DECLINED, error_message=error_message
        )
        order = self._move_order(payment.order_code, OrderState.ADDING_ITEMS)
        return declined, order

    def _move_order(self, order_code: str, to_state: OrderState) -> Order | None:
        # The payment outcome is already recorded; an order that cannot
        # follow is reported rather than rolled back.
        try:
            return self.transition_order(order_code, to_state)
        except (StateTransitionError, ValueError) as e:
            logger.warning("Order %s not moved to %s: %s", order_code, to_state.value, e)
            return None
