"""Handler for Lyra Instant Payment Notifications.

Provides the business logic of the IPN endpoint separate from HTTP routing:
- Signed field extraction from the raw request body
- Signature verification against every configured shop mode
- Idempotent settle/decline of the matching payment
"""

import datetime as dt
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl

from pydantic import ValidationError

from lyra_shared.models import (
    ErrorCode,
    HashKeyType,
    IpnEvent,
    IpnResult,
    LyraAnswer,
    Payment,
    PaymentError,
    PaymentState,
    SignedFields,
    StateTransitionError,
)
from lyra_shared.utils.logging import log_ipn_event

from .lyra_config import LyraConfigError
from .signature import SignatureVerifier, VerificationResult

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService
    from .lyra_config import LyraConfigService
    from .order_service import OrderService

logger = logging.getLogger(__name__)

SUPPORTED_HASH_ALGORITHM = "sha256_hmac"

# Results after which a redelivery must not be processed again
SUCCESSFUL_RESULTS = frozenset(
    {IpnResult.SETTLED.value, IpnResult.DECLINED.value, IpnResult.IGNORED.value}
)

_FIELD_NAMES = {
    "kr-answer": "kr_answer",
    "kr-hash": "kr_hash",
    "kr-hash-key": "kr_hash_key",
    "kr-hash-algorithm": "kr_hash_algorithm",
    "kr-answer-type": "kr_answer_type",
}


@dataclass(frozen=True)
class IpnOutcome:
    """Result of handling one IPN delivery."""

    result: IpnResult
    event_id: str
    order_code: str
    transaction_uuid: str | None = None
    payment_id: str | None = None
    order_status: str | None = None
    message: str | None = None


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


class IpnHandler:
    """Processes Lyra IPN deliveries.

    Ensures idempotent processing using kr-hash tracking in the
    ipn-events table.
    """

    IPN_EVENTS_TABLE = "ipn-events"

    def __init__(
        self,
        db: "DynamoDBService",
        orders: "OrderService",
        config: "LyraConfigService",
    ) -> None:
        """Initialize IPN handler.

        Args:
            db: DynamoDB service for the event log
            orders: Order and payment repository
            config: Lyra configuration (signing keys)
        """
        self._db = db
        self._orders = orders
        self._config = config

    # Parsing

    @staticmethod
    def extract_signed_fields(raw_body: bytes, content_type: str | None) -> SignedFields:
        """Extract the signed kr-* fields from a raw request body.

        Form bodies are decoded with parse_qsl so kr-answer keeps the exact
        characters the gateway signed. JSON bodies keep string values as-is.
        Both ``kr-answer`` and ``kr_answer`` spellings are accepted.

        Args:
            raw_body: Request body bytes as received
            content_type: Content-Type header value

        Returns:
            SignedFields with whatever fields were present
        """
        text = raw_body.decode("utf-8", errors="replace")
        media_type = (content_type or "").split(";")[0].strip().lower()

        values: dict[str, str] = {}
        if media_type == "application/json":
            try:
                data = json.loads(text) if text else {}
            except ValueError:
                data = {}
            if isinstance(data, dict):
                values = {k: _as_text(v) for k, v in data.items() if v is not None}
        else:
            for key, value in parse_qsl(text, keep_blank_values=True):
                values.setdefault(key, value)

        fields: dict[str, str] = {}
        for hyphenated, attr in _FIELD_NAMES.items():
            value = values.get(hyphenated, values.get(attr))
            if value is not None:
                fields[attr] = value
        return SignedFields(**fields)

    @staticmethod
    def parse_answer(kr_answer: str) -> LyraAnswer:
        """Parse kr-answer JSON.

        Raises:
            PaymentError: MALFORMED_ANSWER if the JSON is invalid or lacks the
                order id or transaction uuid.
        """
        try:
            data = json.loads(kr_answer)
        except ValueError as e:
            raise PaymentError(
                ErrorCode.MALFORMED_ANSWER, details={"reason": "invalid JSON"}
            ) from e
        if not isinstance(data, dict):
            raise PaymentError(
                ErrorCode.MALFORMED_ANSWER, details={"reason": "not a JSON object"}
            )

        try:
            answer = LyraAnswer.model_validate(data)
        except ValidationError as e:
            raise PaymentError(
                ErrorCode.MALFORMED_ANSWER,
                details={"reason": f"{e.error_count()} invalid field(s)"},
            ) from e

        if not answer.order_code:
            raise PaymentError(
                ErrorCode.MALFORMED_ANSWER,
                details={"reason": "missing orderDetails.orderId"},
            )
        if not answer.transaction_uuid:
            raise PaymentError(
                ErrorCode.MALFORMED_ANSWER,
                details={"reason": "missing transactions[0].uuid"},
            )
        return answer

    # Verification

    def verify(
        self,
        fields: SignedFields,
        default_key_type: HashKeyType = HashKeyType.PASSWORD,
    ) -> VerificationResult:
        """Verify the kr-hash of a callback.

        Args:
            fields: Extracted signed fields (must be complete)
            default_key_type: Key type used when kr-hash-key is absent

        Returns:
            VerificationResult (verified may be False)

        Raises:
            PaymentError: UNSUPPORTED_HASH_ALGORITHM or CONFIGURATION_ERROR.
        """
        algorithm = (fields.kr_hash_algorithm or SUPPORTED_HASH_ALGORITHM).strip().lower()
        if algorithm != SUPPORTED_HASH_ALGORITHM:
            raise PaymentError(
                ErrorCode.UNSUPPORTED_HASH_ALGORITHM,
                details={"algorithm": fields.kr_hash_algorithm or ""},
            )

        key_type = default_key_type
        if fields.kr_hash_key:
            try:
                key_type = HashKeyType(fields.kr_hash_key.strip().lower())
            except ValueError:
                logger.warning(
                    "Unknown kr-hash-key %r, using %s", fields.kr_hash_key, key_type.value
                )

        try:
            keys = self._config.signing_keys(key_type)
        except LyraConfigError as e:
            logger.error("Cannot verify signature: %s", e)
            raise PaymentError(
                ErrorCode.CONFIGURATION_ERROR, details={"key_type": key_type.value}
            ) from e

        verifier = SignatureVerifier(keys, compat=self._config.signature_compat)
        return verifier.verify(fields.kr_answer or "", fields.kr_hash)

    # Event log

    def is_event_already_processed(self, event_id: str) -> bool:
        """Check if an IPN delivery was already processed successfully.

        Deliveries that ended in an error are retried.

        Args:
            event_id: Delivery identifier (kr-hash)
        """
        existing = self._db.get_item(self.IPN_EVENTS_TABLE, {"event_id": event_id})
        if existing is None:
            return False
        return existing.get("processing_result") in SUCCESSFUL_RESULTS

    def log_event(
        self,
        event_id: str,
        answer: LyraAnswer,
        payload_hash: str,
        processing_result: str,
        payment_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Record an IPN delivery for idempotency and audit trail.

        Args:
            event_id: Delivery identifier (kr-hash)
            answer: Parsed kr-answer
            payload_hash: SHA-256 of kr-answer
            processing_result: settled, declined, duplicate, ignored or error
            payment_id: Payment that was updated (if any)
            error_message: Error message if processing failed
        """
        event = IpnEvent(
            event_id=event_id,
            order_code=answer.order_code or "",
            transaction_uuid=answer.transaction_uuid,
            order_status=answer.order_status,
            payload_hash=payload_hash,
            processed_at=dt.datetime.now(dt.UTC),
            processing_result=processing_result,
            payment_id=payment_id,
            error_message=error_message,
        )
        item = {k: v for k, v in event.model_dump(mode="json").items() if v is not None}
        self._db.put_item(self.IPN_EVENTS_TABLE, item)

    # Processing

    def _find_payment(self, order_code: str, transaction_uuid: str) -> Payment | None:
        payment = self._orders.find_payment_by_transaction(order_code, transaction_uuid)
        if payment is not None:
            return payment

        pending = self._orders.find_pending_payment(order_code)
        if pending is None:
            return None
        logger.info(
            "Binding transaction %s to payment %s", transaction_uuid, pending.payment_id
        )
        return self._orders.bind_transaction(pending.payment_id, transaction_uuid)

    def _apply(self, payment: Payment, answer: LyraAnswer) -> tuple[IpnResult, str | None]:
        target = PaymentState.SETTLED if answer.is_paid else PaymentState.DECLINED

        if payment.state == target:
            return IpnResult.DUPLICATE, f"Payment already {target.value}"
        if payment.state not in (PaymentState.CREATED, PaymentState.AUTHORIZED):
            return (
                IpnResult.IGNORED,
                f"Payment is {payment.state.value}; {answer.order_status} not applied",
            )

        try:
            if answer.is_paid:
                self._orders.settle_payment(payment)
                return IpnResult.SETTLED, None
            detail = None
            if answer.transactions:
                detail = answer.transactions[0].detailed_status
            self._orders.decline_payment(
                payment,
                error_message=f"Lyra orderStatus={answer.order_status}"
                + (f" ({detail})" if detail else ""),
            )
            return IpnResult.DECLINED, None
        except StateTransitionError as e:
            # Another delivery moved the payment first
            current = self._orders.get_payment(payment.payment_id)
            if current is not None and current.state == target:
                return IpnResult.DUPLICATE, f"Payment already {target.value}"
            return IpnResult.IGNORED, str(e)

    def handle(self, raw_body: bytes, content_type: str | None) -> IpnOutcome:
        """Authenticate and process one IPN delivery.

        Args:
            raw_body: Request body bytes as received
            content_type: Content-Type header value

        Returns:
            IpnOutcome describing what was done

        Raises:
            PaymentError: For malformed, unauthenticated or unmatched deliveries.
        """
        fields = self.extract_signed_fields(raw_body, content_type)
        if not fields.is_complete:
            missing = [
                name
                for name, value in (("kr-answer", fields.kr_answer), ("kr-hash", fields.kr_hash))
                if not value
            ]
            logger.warning("IPN missing fields: %s", ", ".join(missing))
            raise PaymentError(
                ErrorCode.MISSING_IPN_FIELDS, details={"missing": ", ".join(missing)}
            )

        kr_answer = fields.kr_answer or ""
        event_id = (fields.kr_hash or "").strip().lower()

        verification = self.verify(fields)
        if not verification.verified:
            log_ipn_event(
                logger,
                None,
                event_id,
                result="error",
                error="invalid signature",
                attempts=verification.attempts,
            )
            raise PaymentError(ErrorCode.INVALID_SIGNATURE)

        answer = self.parse_answer(kr_answer)
        order_code = answer.order_code or ""
        transaction_uuid = answer.transaction_uuid or ""
        payload_hash = hashlib.sha256(kr_answer.encode("utf-8")).hexdigest()

        log_ipn_event(
            logger,
            answer.order_status,
            event_id,
            order_code=order_code,
            transaction_uuid=transaction_uuid,
            result="received",
            mode=verification.mode.value if verification.mode else None,
        )

        if self.is_event_already_processed(event_id):
            log_ipn_event(
                logger,
                answer.order_status,
                event_id,
                order_code=order_code,
                result=IpnResult.DUPLICATE.value,
            )
            return IpnOutcome(
                result=IpnResult.DUPLICATE,
                event_id=event_id,
                order_code=order_code,
                transaction_uuid=transaction_uuid,
                order_status=answer.order_status,
                message="Notification already processed",
            )

        if self._orders.get_order(order_code) is None:
            self.log_event(
                event_id, answer, payload_hash, "error", error_message="order not found"
            )
            raise PaymentError(ErrorCode.ORDER_NOT_FOUND, details={"order_code": order_code})

        try:
            payment = self._find_payment(order_code, transaction_uuid)
        except StateTransitionError:
            # A concurrent delivery bound the pending payment first
            payment = self._orders.find_payment_by_transaction(order_code, transaction_uuid)
        if payment is None:
            self.log_event(
                event_id, answer, payload_hash, "error", error_message="payment not found"
            )
            raise PaymentError(
                ErrorCode.PAYMENT_NOT_FOUND,
                details={"order_code": order_code, "transaction_uuid": transaction_uuid},
            )

        result, message = self._apply(payment, answer)
        self.log_event(
            event_id,
            answer,
            payload_hash,
            result.value,
            payment_id=payment.payment_id,
            error_message=message,
        )
        log_ipn_event(
            logger,
            answer.order_status,
            event_id,
            order_code=order_code,
            transaction_uuid=transaction_uuid,
            result=result.value,
            payment_id=payment.payment_id,
        )

        return IpnOutcome(
            result=result,
            event_id=event_id,
            order_code=order_code,
            transaction_uuid=transaction_uuid,
            payment_id=payment.payment_id,
            order_status=answer.order_status,
            message=message,
        )
