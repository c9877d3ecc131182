"""Structured logging for the payment services.

Every record carries the request's correlation ID. Payment and IPN helpers
attach their context as record attributes (``extra``) so the JSON formatter
can emit them as fields for CloudWatch Logs Insights queries.

Usage:
    from lyra_shared.utils.logging import get_logger, log_ipn_event

    logger = get_logger(__name__)
    log_ipn_event(logger, "PAID", kr_hash, order_code="ORD-1", result="settled")
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

NO_CORRELATION_ID = "no-correlation-id"

# Record attributes copied into JSON output when present
CONTEXT_FIELDS = (
    "operation",
    "event_id",
    "order_code",
    "order_status",
    "transaction_uuid",
    "payment_id",
    "amount",
    "state",
    "result",
    "error",
)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation ID to the current context, generating one if needed.

    Returns:
        The correlation ID now in effect
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Stamps ``record.correlation_id`` on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class StructuredFormatter(logging.Formatter):
    """Text formatter with a ``[correlation-id]`` prefix."""

    def format(self, record: logging.LogRecord) -> str:
        cid = getattr(record, "correlation_id", None) or get_correlation_id()
        return f"[{cid or NO_CORRELATION_ID}] {super().format(record)}"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including payment context fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None)
            or get_correlation_id()
            or NO_CORRELATION_ID,
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: int | str = logging.INFO, fmt: str = "text") -> None:
    """Install one stream handler on the root logger.

    Repeated calls only change the level.

    Args:
        level: Root log level (number or name)
        fmt: ``text`` or ``json``
    """
    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_lyra_handler", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(StructuredFormatter(DEFAULT_LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    handler._lyra_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """``logging.getLogger`` with the correlation filter attached once."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def _emit(
    logger: logging.Logger, level: int, parts: list[str], context: dict[str, Any]
) -> None:
    extra = {k: v for k, v in context.items() if v is not None}
    logger.log(level, " | ".join(parts), extra=extra)


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    payment_id: str | None = None,
    order_code: str | None = None,
    amount: int | None = None,
    state: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a payment repository or gateway operation.

    Logged at ERROR when ``error`` is set, INFO otherwise. Context values
    appear in the message as ``key=value`` and on the record as attributes.
    """
    context: dict[str, Any] = {
        "operation": operation,
        "payment_id": payment_id,
        "order_code": order_code,
        "amount": amount,
        "state": state,
        "error": error,
        **extra,
    }
    parts = [f"Payment operation: {operation}"]
    parts += [f"{k}={v}" for k, v in context.items() if k != "operation" and v is not None]
    _emit(logger, logging.ERROR if error else logging.INFO, parts, context)


def log_ipn_event(
    logger: logging.Logger,
    order_status: str | None,
    event_id: str,
    *,
    order_code: str | None = None,
    transaction_uuid: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log one step of IPN processing.

    Level follows the result: ``error`` is ERROR, ``duplicate`` and
    ``ignored`` are WARNING, anything else INFO.
    """
    context: dict[str, Any] = {
        "order_status": order_status,
        "event_id": event_id,
        "order_code": order_code,
        "transaction_uuid": transaction_uuid,
        "result": result,
        "error": error,
        **extra,
    }
    parts = [f"IPN: {order_status} ({event_id[:12]})"]
    for label, value in (("result", result), ("order", order_code), ("error", error)):
        if value:
            parts.append(f"{label}={value}")

    if result == "error":
        level = logging.ERROR
    elif result in ("duplicate", "ignored"):
        level = logging.WARNING
    else:
        level = logging.INFO
    _emit(logger, level, parts, context)
