"""Release orders abandoned on the payment page.

An order moves to ArrangingPayment when a form token is issued. If the
shopper never pays, the cart stays locked; this task moves such orders back to
AddingItems (or Cancelled when that is refused).
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from lyra_shared.models import OrderState, PaymentState, StateTransitionError

if TYPE_CHECKING:
    from .order_service import OrderService

logger = logging.getLogger(__name__)

DEFAULT_MIN_AGE_MINUTES = 30
DEFAULT_MAX_BATCH = 100

_PAID_STATES = frozenset({PaymentState.AUTHORIZED, PaymentState.SETTLED})


def unlock_stuck_orders(
    orders: "OrderService",
    *,
    min_age_minutes: int = DEFAULT_MIN_AGE_MINUTES,
    max_batch: int = DEFAULT_MAX_BATCH,
    now: dt.datetime | None = None,
) -> dict[str, Any]:
    """Unlock ArrangingPayment orders older than min_age_minutes.

    Orders with an Authorized or Settled payment are left alone.

    Args:
        orders: Order and payment repository
        min_age_minutes: Minimum time since the order was last updated
        max_batch: Maximum number of orders scanned per run
        now: Current time (defaults to UTC now)

    Returns:
        Summary dict with scanned, unlocked, cancelled and cutoff
    """
    now = now or dt.datetime.now(dt.UTC)
    cutoff = now - dt.timedelta(minutes=max(1, min_age_minutes))
    stuck = orders.find_stuck_orders(cutoff, max(1, max_batch))

    unlocked = 0
    cancelled = 0

    for order in stuck:
        payments = orders.get_payments_for_order(order.order_code)
        if any(p.state in _PAID_STATES for p in payments):
            continue

        try:
            orders.transition_order(order.order_code, OrderState.ADDING_ITEMS)
        except (StateTransitionError, ValueError) as unlock_error:
            try:
                orders.transition_order(order.order_code, OrderState.CANCELLED)
            except (StateTransitionError, ValueError) as cancel_error:
                logger.warning(
                    "Failed to unlock/cancel stuck order %s: %s; %s",
                    order.order_code,
                    unlock_error,
                    cancel_error,
                )
                continue
            cancelled += 1
            logger.warning("Cancelled stuck order %s (was ArrangingPayment)", order.order_code)
            continue

        unlocked += 1
        logger.info(
            "Unlocked stuck order %s: ArrangingPayment -> AddingItems", order.order_code
        )

    summary = {
        "scanned": len(stuck),
        "unlocked": unlocked,
        "cancelled": cancelled,
        "cutoff": cutoff.isoformat(),
    }
    logger.info("Stuck order sweep complete: %s", summary)
    return summary
