"""Pytest configuration and fixtures for the Lyra payments backend tests.

This module provides reusable fixtures for testing:
- DynamoDB and SSM mocking with moto
- Sample orders and payments
- Signed Lyra notification builders
"""

import datetime as dt
import hashlib
import hmac
import json
import os
from collections.abc import Callable
from typing import Any, Generator

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-payments")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("FRONTEND_URL", "https://shop.example.com")
os.environ.pop("LYRA_SIGNATURE_COMPAT", None)
os.environ.pop("LYRA_MODE", None)
os.environ.pop("LYRA_MODES", None)

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

TABLE_PREFIX = os.environ["DYNAMODB_TABLE_PREFIX"]

# === Lyra test credentials ===

TEST_USERNAME = "69876357"
TEST_PASSWORD = "testpassword_DEMOPRIVATEKEY23G4475zXZQ2UA5x7M"
TEST_HMAC_KEY = "38453613e7f44dc58732bad3dca2bca3"
TEST_PUBLIC_KEY = "69876357:testpublickey_DEMOPUBLICKEY95me92597fd28tGD4r5"

PROD_USERNAME = "69876357"
PROD_PASSWORD = "prodpassword_LIVEPRIVATEKEYm4bX82nq7RtY"
PROD_HMAC_KEY = "9b1d0e2f7a6c4e5d8f3a2b1c0d9e8f7a"
PROD_PUBLIC_KEY = "69876357:publickey_LIVEPUBLICKEYw8r2"

LYRA_PARAMETERS = {
    "test": {
        "username": TEST_USERNAME,
        "password": TEST_PASSWORD,
        "hmac_key": TEST_HMAC_KEY,
        "public_key": TEST_PUBLIC_KEY,
    },
    "production": {
        "username": PROD_USERNAME,
        "password": PROD_PASSWORD,
        "hmac_key": PROD_HMAC_KEY,
        "public_key": PROD_PUBLIC_KEY,
    },
}

TEST_ORDER_CODE = "ORD-2026-0001"
TEST_TRANSACTION_UUID = "a3c4e1f29b7d4a0e8c5f6b1d2e3f4a5b"


# === Singletons ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset DynamoDB, SSM and service singletons before and after each test.

    This ensures tests using mock_aws get fresh service instances
    inside the mock context.
    """
    from lyra_api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


# === AWS Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


def create_tables(client: Any) -> None:
    """Create the orders, payments and ipn-events tables."""
    client.create_table(
        TableName=f"{TABLE_PREFIX}-orders",
        KeySchema=[{"AttributeName": "order_code", "KeyType": "HASH"}],
        AttributeDefinitions=[
            {"AttributeName": "order_code", "AttributeType": "S"},
            {"AttributeName": "state", "AttributeType": "S"},
            {"AttributeName": "updated_at", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "state-index",
                "KeySchema": [
                    {"AttributeName": "state", "KeyType": "HASH"},
                    {"AttributeName": "updated_at", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.create_table(
        TableName=f"{TABLE_PREFIX}-payments",
        KeySchema=[{"AttributeName": "payment_id", "KeyType": "HASH"}],
        AttributeDefinitions=[
            {"AttributeName": "payment_id", "AttributeType": "S"},
            {"AttributeName": "order_code", "AttributeType": "S"},
            {"AttributeName": "created_at", "AttributeType": "S"},
            {"AttributeName": "transaction_id", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "order-index",
                "KeySchema": [
                    {"AttributeName": "order_code", "KeyType": "HASH"},
                    {"AttributeName": "created_at", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
            {
                "IndexName": "transaction-index",
                "KeySchema": [{"AttributeName": "transaction_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.create_table(
        TableName=f"{TABLE_PREFIX}-ipn-events",
        KeySchema=[{"AttributeName": "event_id", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "event_id", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )


def put_lyra_parameters(client: Any, parameters: dict[str, dict[str, str]]) -> None:
    """Store Lyra credentials in SSM for each mode."""
    for mode, values in parameters.items():
        for name, value in values.items():
            client.put_parameter(
                Name=f"/payments/test/lyra/{mode}/{name}",
                Value=value,
                Type="SecureString",
                Overwrite=True,
            )


@pytest.fixture
def aws(aws_credentials: None) -> Generator[dict[str, Any], None, None]:
    """Mocked AWS with tables and Lyra parameters in place."""
    with mock_aws():
        dynamodb = boto3.client("dynamodb", region_name="eu-west-1")
        ssm = boto3.client("ssm", region_name="eu-west-1")
        create_tables(dynamodb)
        put_lyra_parameters(ssm, LYRA_PARAMETERS)
        yield {"dynamodb": dynamodb, "ssm": ssm}


@pytest.fixture
def db(aws: dict[str, Any]) -> Any:
    """DynamoDBService bound to the mocked tables."""
    from lyra_shared.services.dynamodb import get_dynamodb_service

    return get_dynamodb_service()


@pytest.fixture
def order_service(db: Any) -> Any:
    """OrderService bound to the mocked tables."""
    from lyra_shared.services.order_service import OrderService

    return OrderService(db)


@pytest.fixture
def config_service(aws: dict[str, Any]) -> Any:
    """LyraConfigService reading the mocked SSM parameters."""
    from lyra_shared.services.lyra_config import LyraConfigService

    return LyraConfigService()


# === Sample Data Fixtures ===


@pytest.fixture
def make_order(order_service: Any) -> Callable[..., Any]:
    """Factory storing an order in the mocked orders table."""
    from lyra_shared.models import Order, OrderState

    def _make(
        order_code: str = TEST_ORDER_CODE,
        state: OrderState = OrderState.ARRANGING_PAYMENT,
        total_with_tax: int = 4990,
        updated_at: dt.datetime | None = None,
        active: bool = True,
    ) -> Any:
        now = dt.datetime.now(dt.UTC)
        order = Order(
            order_code=order_code,
            state=state,
            active=active,
            currency_code="EUR",
            total_with_tax=total_with_tax,
            customer_email="shopper@example.com",
            customer_id="CUST-42",
            created_at=updated_at or now,
            updated_at=updated_at or now,
        )
        return order_service.create_order(order)

    return _make


@pytest.fixture
def make_payment(order_service: Any) -> Callable[..., Any]:
    """Factory storing a Lyra payment for an order."""
    from lyra_shared.models import PaymentState

    def _make(
        order_code: str = TEST_ORDER_CODE,
        state: PaymentState = PaymentState.CREATED,
        amount: int = 4990,
        transaction_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Any:
        return order_service.add_payment(
            order_code,
            amount,
            state,
            metadata=metadata,
            transaction_id=transaction_id,
        )

    return _make


# === Lyra payload builders ===


def build_answer(
    order_code: str = TEST_ORDER_CODE,
    order_status: str = "PAID",
    transaction_uuid: str = TEST_TRANSACTION_UUID,
    amount: int = 4990,
) -> dict[str, Any]:
    """A kr-answer document as sent by Lyra."""
    return {
        "shopId": TEST_USERNAME,
        "orderCycle": "CLOSED",
        "orderStatus": order_status,
        "serverDate": "2026-10-19T10:15:42+00:00",
        "orderDetails": {
            "orderTotalAmount": amount,
            "orderCurrency": "EUR",
            "mode": "TEST",
            "orderId": order_code,
        },
        "customer": {"email": "shopper@example.com"},
        "transactions": [
            {
                "uuid": transaction_uuid,
                "amount": amount,
                "currency": "EUR",
                "status": "PAID" if order_status == "PAID" else "UNPAID",
                "detailedStatus": "AUTHORISED" if order_status == "PAID" else "REFUSED",
            }
        ],
        "_type": "V4/Payment",
    }


def sign(kr_answer: str, secret: str = TEST_PASSWORD) -> str:
    """kr-hash of a kr-answer with the canonical scheme."""
    return hmac.new(
        secret.encode("utf-8"), kr_answer.encode("utf-8"), hashlib.sha256
    ).hexdigest()


@pytest.fixture
def signed_ipn() -> Callable[..., dict[str, str]]:
    """Factory for signed IPN form fields."""

    def _build(
        answer: dict[str, Any] | None = None,
        secret: str = TEST_PASSWORD,
        hash_key: str = "password",
        **answer_kwargs: Any,
    ) -> dict[str, str]:
        kr_answer = json.dumps(answer or build_answer(**answer_kwargs))
        return {
            "kr-hash": sign(kr_answer, secret),
            "kr-hash-algorithm": "sha256_hmac",
            "kr-answer-type": "V4/Payment",
            "kr-answer": kr_answer,
            "kr-hash-key": hash_key,
        }

    return _build


@pytest.fixture
def lyra_secrets() -> dict[str, dict[str, str]]:
    """The Lyra credentials stored in the mocked SSM, by mode."""
    return LYRA_PARAMETERS
