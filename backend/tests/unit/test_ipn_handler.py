"""Unit tests for IpnHandler (moto DynamoDB + SSM).

Covers:
- Signed field extraction from form and JSON bodies
- Signature enforcement and hash algorithm checks
- Settle/decline transitions and idempotent redelivery
"""

import json
from urllib.parse import urlencode

import pytest

from lyra_shared.models import (
    ErrorCode,
    IpnResult,
    OrderState,
    PaymentError,
    PaymentState,
)
from lyra_shared.services.ipn_handler import IpnHandler

FORM = "application/x-www-form-urlencoded"
ORDER_CODE = "ORD-2026-0001"
TX_UUID = "a3c4e1f29b7d4a0e8c5f6b1d2e3f4a5b"


@pytest.fixture
def handler(db, order_service, config_service):
    return IpnHandler(db=db, orders=order_service, config=config_service)


def _form(fields: dict[str, str]) -> bytes:
    return urlencode(fields).encode("utf-8")


class TestExtractSignedFields:
    def test_form_body(self):
        body = _form({"kr-answer": '{"a": "b c+d"}', "kr-hash": "ABC", "kr-hash-key": "password"})

        fields = IpnHandler.extract_signed_fields(body, FORM)

        assert fields.kr_answer == '{"a": "b c+d"}'
        assert fields.kr_hash == "ABC"
        assert fields.kr_hash_key == "password"
        assert fields.is_complete

    def test_form_body_with_charset(self):
        body = _form({"kr-answer": "x", "kr-hash": "y"})
        fields = IpnHandler.extract_signed_fields(body, f"{FORM}; charset=UTF-8")
        assert fields.is_complete

    def test_underscore_field_names(self):
        body = _form({"kr_answer": "x", "kr_hash": "y"})
        fields = IpnHandler.extract_signed_fields(body, FORM)
        assert fields.kr_answer == "x"
        assert fields.kr_hash == "y"

    def test_json_body_keeps_string_answer(self):
        answer = '{"orderStatus":"PAID"}'
        body = json.dumps({"kr-answer": answer, "kr-hash": "y"}).encode()

        fields = IpnHandler.extract_signed_fields(body, "application/json")
        assert fields.kr_answer == answer

    def test_json_body_object_answer_is_serialised(self):
        body = json.dumps({"kr-answer": {"orderStatus": "PAID"}, "kr-hash": "y"}).encode()
        fields = IpnHandler.extract_signed_fields(body, "application/json")
        assert json.loads(fields.kr_answer) == {"orderStatus": "PAID"}

    def test_invalid_json_body_yields_no_fields(self):
        fields = IpnHandler.extract_signed_fields(b"{not json", "application/json")
        assert not fields.is_complete

    def test_empty_body(self):
        fields = IpnHandler.extract_signed_fields(b"", FORM)
        assert fields.kr_answer is None
        assert not fields.is_complete


class TestParseAnswer:
    def test_invalid_json(self):
        with pytest.raises(PaymentError) as exc:
            IpnHandler.parse_answer("{broken")
        assert exc.value.code == ErrorCode.MALFORMED_ANSWER

    def test_missing_order_id(self):
        with pytest.raises(PaymentError) as exc:
            IpnHandler.parse_answer(json.dumps({"transactions": [{"uuid": "x"}]}))
        assert exc.value.code == ErrorCode.MALFORMED_ANSWER

    def test_missing_transaction(self):
        with pytest.raises(PaymentError) as exc:
            IpnHandler.parse_answer(json.dumps({"orderDetails": {"orderId": "ORD-1"}}))
        assert exc.value.code == ErrorCode.MALFORMED_ANSWER

    def test_valid_answer(self):
        answer = IpnHandler.parse_answer(
            json.dumps(
                {
                    "orderStatus": "PAID",
                    "orderDetails": {"orderId": "ORD-1"},
                    "transactions": [{"uuid": "tx"}],
                    "unknownField": {"nested": True},
                }
            )
        )
        assert answer.order_code == "ORD-1"
        assert answer.transaction_uuid == "tx"
        assert answer.is_paid


class TestRejections:
    """Invalid deliveries raise before any state is touched."""

    def test_missing_fields(self, handler, make_order, make_payment, order_service):
        make_order()
        payment = make_payment()

        with pytest.raises(PaymentError) as exc:
            handler.handle(_form({"kr-answer": "{}"}), FORM)

        assert exc.value.code == ErrorCode.MISSING_IPN_FIELDS
        assert order_service.get_payment(payment.payment_id).state == PaymentState.CREATED

    def test_invalid_signature(self, handler, signed_ipn, make_order, make_payment, order_service):
        make_order()
        payment = make_payment()

        with pytest.raises(PaymentError) as exc:
            handler.handle(_form(signed_ipn(secret="not-the-password")), FORM)

        assert exc.value.code == ErrorCode.INVALID_SIGNATURE
        assert order_service.get_payment(payment.payment_id).state == PaymentState.CREATED
        assert order_service.get_order(ORDER_CODE).state == OrderState.ARRANGING_PAYMENT

    def test_tampered_answer(self, handler, signed_ipn, make_order, make_payment):
        make_order()
        make_payment()
        fields = signed_ipn()
        fields["kr-answer"] = fields["kr-answer"].replace("4990", "1")

        with pytest.raises(PaymentError) as exc:
            handler.handle(_form(fields), FORM)
        assert exc.value.code == ErrorCode.INVALID_SIGNATURE

    def test_unsupported_algorithm(self, handler, signed_ipn):
        fields = signed_ipn()
        fields["kr-hash-algorithm"] = "md5"

        with pytest.raises(PaymentError) as exc:
            handler.handle(_form(fields), FORM)
        assert exc.value.code == ErrorCode.UNSUPPORTED_HASH_ALGORITHM

    def test_unknown_order(self, handler, signed_ipn, make_order, make_payment, order_service):
        make_order()
        payment = make_payment()

        with pytest.raises(PaymentError) as exc:
            handler.handle(_form(signed_ipn(order_code="ORD-UNKNOWN")), FORM)

        assert exc.value.code == ErrorCode.ORDER_NOT_FOUND
        assert order_service.get_payment(payment.payment_id).state == PaymentState.CREATED

    def test_no_matching_payment(self, handler, signed_ipn, make_order):
        make_order()
        with pytest.raises(PaymentError) as exc:
            handler.handle(_form(signed_ipn()), FORM)
        assert exc.value.code == ErrorCode.PAYMENT_NOT_FOUND

    def test_missing_keys_is_configuration_error(
        self, handler, signed_ipn, aws, monkeypatch
    ):
        monkeypatch.setattr(handler._config, "modes", [])

        with pytest.raises(PaymentError) as exc:
            handler.handle(_form(signed_ipn()), FORM)
        assert exc.value.code == ErrorCode.CONFIGURATION_ERROR


class TestTransitions:
    def test_paid_settles_payment_and_order(
        self, handler, signed_ipn, make_order, make_payment, order_service
    ):
        make_order()
        payment = make_payment()

        outcome = handler.handle(_form(signed_ipn()), FORM)

        assert outcome.result == IpnResult.SETTLED
        assert outcome.payment_id == payment.payment_id
        stored = order_service.get_payment(payment.payment_id)
        assert stored.state == PaymentState.SETTLED
        assert stored.transaction_id == TX_UUID
        assert order_service.get_order(ORDER_CODE).state == OrderState.PAYMENT_SETTLED

    def test_unpaid_declines_and_reverts_order(
        self, handler, signed_ipn, make_order, make_payment, order_service
    ):
        make_order()
        payment = make_payment()

        outcome = handler.handle(_form(signed_ipn(order_status="UNPAID")), FORM)

        assert outcome.result == IpnResult.DECLINED
        stored = order_service.get_payment(payment.payment_id)
        assert stored.state == PaymentState.DECLINED
        assert "UNPAID" in stored.error_message
        assert order_service.get_order(ORDER_CODE).state == OrderState.ADDING_ITEMS

    @pytest.mark.parametrize("status", ["RUNNING", "ABANDONED", "PARTIALLY_PAID"])
    def test_any_non_paid_status_declines(
        self, handler, signed_ipn, make_order, make_payment, status
    ):
        make_order()
        make_payment()
        outcome = handler.handle(_form(signed_ipn(order_status=status)), FORM)
        assert outcome.result == IpnResult.DECLINED

    def test_payment_found_by_transaction_uuid(
        self, handler, signed_ipn, make_order, make_payment, order_service
    ):
        make_order()
        bound = make_payment(transaction_id=TX_UUID)
        newer = make_payment()

        outcome = handler.handle(_form(signed_ipn()), FORM)

        assert outcome.payment_id == bound.payment_id
        assert order_service.get_payment(newer.payment_id).state == PaymentState.CREATED

    def test_production_key_verifies(
        self, handler, signed_ipn, make_order, make_payment, lyra_secrets
    ):
        make_order()
        make_payment()

        fields = signed_ipn(secret=lyra_secrets["production"]["password"])
        outcome = handler.handle(_form(fields), FORM)

        assert outcome.result == IpnResult.SETTLED

    def test_json_body_is_accepted(self, handler, signed_ipn, make_order, make_payment):
        make_order()
        make_payment()

        body = json.dumps(signed_ipn()).encode("utf-8")
        outcome = handler.handle(body, "application/json")

        assert outcome.result == IpnResult.SETTLED


class TestIdempotency:
    """Redelivered notifications never settle twice."""

    def test_redelivery_is_duplicate(
        self, handler, signed_ipn, make_order, make_payment, order_service
    ):
        make_order()
        payment = make_payment()
        body = _form(signed_ipn())

        first = handler.handle(body, FORM)
        settled_at = order_service.get_payment(payment.payment_id).settled_at
        second = handler.handle(body, FORM)

        assert first.result == IpnResult.SETTLED
        assert second.result == IpnResult.DUPLICATE
        assert order_service.get_payment(payment.payment_id).settled_at == settled_at

    def test_event_is_logged(self, handler, signed_ipn, make_order, make_payment, db):
        make_order()
        payment = make_payment()
        fields = signed_ipn()

        handler.handle(_form(fields), FORM)

        event = db.get_item("ipn-events", {"event_id": fields["kr-hash"]})
        assert event["processing_result"] == "settled"
        assert event["order_code"] == ORDER_CODE
        assert event["transaction_uuid"] == TX_UUID
        assert event["payment_id"] == payment.payment_id
        assert len(event["payload_hash"]) == 64

    def test_uppercase_hash_is_same_event(
        self, handler, signed_ipn, make_order, make_payment
    ):
        make_order()
        make_payment()
        fields = signed_ipn()
        handler.handle(_form(fields), FORM)

        fields["kr-hash"] = fields["kr-hash"].upper()
        assert handler.handle(_form(fields), FORM).result == IpnResult.DUPLICATE

    def test_new_delivery_for_settled_payment_is_duplicate(
        self, handler, signed_ipn, make_order, make_payment, order_service
    ):
        make_order()
        payment = make_payment(transaction_id=TX_UUID)
        order_service.settle_payment(payment)

        outcome = handler.handle(_form(signed_ipn()), FORM)

        assert outcome.result == IpnResult.DUPLICATE
        assert order_service.get_payment(payment.payment_id).state == PaymentState.SETTLED

    def test_decline_after_settle_is_ignored(
        self, handler, signed_ipn, make_order, make_payment, order_service
    ):
        make_order()
        payment = make_payment(transaction_id=TX_UUID)
        order_service.settle_payment(payment)

        outcome = handler.handle(_form(signed_ipn(order_status="UNPAID")), FORM)

        assert outcome.result == IpnResult.IGNORED
        assert order_service.get_payment(payment.payment_id).state == PaymentState.SETTLED
        assert order_service.get_order(ORDER_CODE).state == OrderState.PAYMENT_SETTLED

    def test_failed_delivery_is_retried(
        self, handler, signed_ipn, make_order, make_payment, db
    ):
        make_order()
        fields = signed_ipn()

        with pytest.raises(PaymentError):
            handler.handle(_form(fields), FORM)
        assert db.get_item("ipn-events", {"event_id": fields["kr-hash"]})[
            "processing_result"
        ] == "error"

        make_payment()
        assert handler.handle(_form(fields), FORM).result == IpnResult.SETTLED


class TestSignatureCompat:
    def test_escaped_answer_rejected_by_default(
        self, handler, signed_ipn, make_order, make_payment
    ):
        make_order()
        make_payment()
        fields = signed_ipn()
        fields["kr-answer"] = fields["kr-answer"].replace("/", "\\/")

        with pytest.raises(PaymentError) as exc:
            handler.handle(_form(fields), FORM)
        assert exc.value.code == ErrorCode.INVALID_SIGNATURE

    def test_escaped_answer_accepted_in_compat_mode(
        self, handler, signed_ipn, make_order, make_payment, monkeypatch, caplog
    ):
        make_order()
        make_payment()
        monkeypatch.setattr(handler._config, "signature_compat", True)
        fields = signed_ipn()
        fields["kr-answer"] = fields["kr-answer"].replace("/", "\\/")

        with caplog.at_level("WARNING"):
            outcome = handler.handle(_form(fields), FORM)

        assert outcome.result == IpnResult.SETTLED
        assert "non-canonical" in caplog.text
