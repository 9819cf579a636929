"""Pytest configuration and fixtures for storefront payment tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (orders, payment references, ledger)
- An in-memory Paystack API served through httpx.MockTransport
- A fully wired ReconciliationEngine over both
"""

import itertools
import json
import os
from typing import Any, Callable, Generator
from unittest.mock import MagicMock

import boto3
import httpx
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-storefront")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from payments.config import PaymentSettings  # noqa: E402
from payments.models.order import Order, OrderCreate  # noqa: E402
from payments.services.dynamodb import DynamoDBService  # noqa: E402
from payments.services.idempotency import IdempotencyLedger  # noqa: E402
from payments.services.notification_service import NotificationService  # noqa: E402
from payments.services.order_service import OrderService  # noqa: E402
from payments.services.paystack_service import PaystackService  # noqa: E402
from payments.services.reconciliation import ReconciliationEngine  # noqa: E402

# === Test Configuration ===

TEST_SECRET_KEY = "sk_test_4f8a2b9c1d7e6f3a5b0c"
TEST_USER_ID = "user-sub-123"
OTHER_USER_ID = "user-sub-456"
TEST_EMAIL = "customer@example.com"
TEST_ORDER_TOTAL = 1_500_000  # ₦15,000 in kobo
TABLE_PREFIX = "test-storefront"


# === Paystack stand-in ===


class PaystackStub:
    """In-memory Paystack transaction API.

    Initialize creates an "ongoing" transaction; tests settle it with
    settle() before verifying or building a webhook event for it.
    """

    def __init__(self) -> None:
        self.transactions: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: httpx.Response | Exception | None = None
        self._counter = itertools.count(1)

    @property
    def verify_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path.startswith("/transaction/verify/"))

    @property
    def initialize_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path == "/transaction/initialize")

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.fail_with, Exception):
            raise self.fail_with
        if self.fail_with is not None:
            return self.fail_with

        path = request.url.path
        if request.method == "POST" and path == "/transaction/initialize":
            payload = json.loads(request.content)
            reference = f"ref_{next(self._counter):06d}"
            self.transactions[reference] = {
                "id": 1000 + len(self.transactions),
                "reference": reference,
                "status": "ongoing",
                "amount": payload["amount"],
                "currency": payload.get("currency", "NGN"),
                "gateway_response": None,
                "paid_at": None,
                "customer": {"email": payload["email"], "customer_code": "CUS_test"},
                "authorization": {},
                "metadata": payload.get("metadata", {}),
            }
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.com/{reference}",
                        "access_code": f"ac_{reference}",
                        "reference": reference,
                    },
                },
            )

        if request.method == "GET" and path.startswith("/transaction/verify/"):
            reference = path.rsplit("/", 1)[-1]
            transaction = self.transactions.get(reference)
            if transaction is None:
                return httpx.Response(
                    400, json={"status": False, "message": "Transaction reference not found"}
                )
            return httpx.Response(
                200,
                json={"status": True, "message": "Verification successful", "data": transaction},
            )

        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def settle(
        self,
        reference: str,
        status: str = "success",
        *,
        amount: int | None = None,
        gateway_response: str | None = None,
    ) -> dict[str, Any]:
        transaction = self.transactions[reference]
        transaction["status"] = status
        if amount is not None:
            transaction["amount"] = amount
        if status == "success":
            transaction["gateway_response"] = gateway_response or "Successful"
            transaction["paid_at"] = "2026-01-15T10:00:00.000Z"
            transaction["authorization"] = {"authorization_code": "AUTH_8dfhjjdt"}
        else:
            transaction["gateway_response"] = gateway_response or "Declined"
        return transaction

    def webhook_event(self, reference: str, event: str = "charge.success") -> dict[str, Any]:
        return {"event": event, "data": dict(self.transactions[reference])}


# === DynamoDB Fixtures ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached services before and after each test.

    Tests using mock_aws need services created inside the mock context.
    """
    from payments_api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def dynamodb_client(aws_credentials: None) -> Generator[Any, None, None]:
    """Create a mocked DynamoDB client."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        yield client


@pytest.fixture
def create_tables(dynamodb_client: Any) -> None:
    """Create all required DynamoDB tables for testing."""
    tables = [
        {
            "TableName": f"{TABLE_PREFIX}-orders",
            "KeySchema": [{"AttributeName": "order_id", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "order_id", "AttributeType": "S"},
                {"AttributeName": "payment_status", "AttributeType": "S"},
            ],
            "GlobalSecondaryIndexes": [
                {
                    "IndexName": "payment_status-index",
                    "KeySchema": [{"AttributeName": "payment_status", "KeyType": "HASH"}],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{TABLE_PREFIX}-payment-references",
            "KeySchema": [{"AttributeName": "reference", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "reference", "AttributeType": "S"},
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{TABLE_PREFIX}-payment-ledger",
            "KeySchema": [{"AttributeName": "reference", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "reference", "AttributeType": "S"},
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
    ]

    for table_config in tables:
        dynamodb_client.create_table(**table_config)


@pytest.fixture
def db(create_tables: None) -> DynamoDBService:
    """DynamoDBService bound to the mocked tables."""
    return DynamoDBService(environment="test")


@pytest.fixture
def order_service(db: DynamoDBService) -> OrderService:
    return OrderService(db)


@pytest.fixture
def ledger(db: DynamoDBService) -> IdempotencyLedger:
    return IdempotencyLedger(db)


# === Gateway Fixtures ===


@pytest.fixture
def payment_settings() -> PaymentSettings:
    """Settings with a local secret key so no SSM call is made."""
    return PaymentSettings(environment="dev", paystack_secret_key=TEST_SECRET_KEY)


@pytest.fixture
def paystack_stub() -> PaystackStub:
    return PaystackStub()


@pytest.fixture
def paystack_service(
    payment_settings: PaymentSettings, paystack_stub: PaystackStub
) -> PaystackService:
    """PaystackService talking to the in-memory stub."""
    return PaystackService(payment_settings, transport=httpx.MockTransport(paystack_stub.handle))


# === Engine Fixtures ===


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=NotificationService)


@pytest.fixture
def engine(
    order_service: OrderService,
    ledger: IdempotencyLedger,
    paystack_service: PaystackService,
    payment_settings: PaymentSettings,
    notifier: MagicMock,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        orders=order_service,
        ledger=ledger,
        gateway=paystack_service,
        settings=payment_settings,
        notifier=notifier,
    )


@pytest.fixture
def make_order(order_service: OrderService) -> Callable[..., Order]:
    """Factory creating a pending order owned by TEST_USER_ID."""

    def _make(total: int = TEST_ORDER_TOTAL, user_id: str = TEST_USER_ID) -> Order:
        return order_service.create_order(
            OrderCreate(user_id=user_id, customer_email=TEST_EMAIL, total=total)
        )

    return _make
