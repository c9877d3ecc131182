"""Unlock Stuck Orders Lambda - EventBridge scheduled handler.

Runs every 15 minutes. Orders left in ArrangingPayment by shoppers who never
completed the Lyra form are moved back to AddingItems so their carts can be
edited again (or Cancelled when that transition is refused).

Parameters, in order of precedence:
1. Event fields ``minAgeMinutes`` / ``maxBatch``
2. Environment variables ``MIN_AGE_MINUTES`` / ``MAX_BATCH``
3. Defaults (30 minutes, 100 orders)
"""

import logging
import os
from typing import Any

from lyra_shared.services.dynamodb import get_dynamodb_service
from lyra_shared.services.order_service import OrderService
from lyra_shared.services.stuck_orders import (
    DEFAULT_MAX_BATCH,
    DEFAULT_MIN_AGE_MINUTES,
    unlock_stuck_orders,
)

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _int_param(event: dict[str, Any], key: str, env_var: str, default: int) -> int:
    """Read an integer parameter from the event, the environment or a default."""
    value = event.get(key, os.environ.get(env_var))
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r, using %d", key, value, default)
        return default


def handler(event: dict[str, Any] | None, context: Any) -> dict[str, Any]:
    """Lambda entry point.

    Args:
        event: EventBridge scheduled event (optionally carrying parameters)
        context: Lambda context (unused)

    Returns:
        Sweep summary with scanned, unlocked, cancelled and cutoff
    """
    event = event or {}
    min_age = _int_param(event, "minAgeMinutes", "MIN_AGE_MINUTES", DEFAULT_MIN_AGE_MINUTES)
    max_batch = _int_param(event, "maxBatch", "MAX_BATCH", DEFAULT_MAX_BATCH)

    logger.info("Unlocking stuck orders: min_age=%d max_batch=%d", min_age, max_batch)

    orders = OrderService(get_dynamodb_service())
    return unlock_stuck_orders(orders, min_age_minutes=min_age, max_batch=max_batch)
