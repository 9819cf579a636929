"""FastAPI dependency injection providers for payment services.

Services are built lazily on first use and cached with @lru_cache so that
one instance of each is shared by all requests in a process.

Usage in routes:
    from payments_api.dependencies import get_reconciliation_engine

    @router.post("/payment/verify/{reference}")
    async def verify_payment(
        reference: str,
        engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    ):
        ...

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── OrderService
        └── IdempotencyLedger
    PaystackService (settings + SSM secret key)
    ReconciliationEngine(OrderService, IdempotencyLedger, PaystackService, NotificationService)

Testing:
    Use reset_services() to clear cached instances between tests, or
    app.dependency_overrides to swap in test instances.
"""

import logging
from functools import lru_cache

from fastapi import Request

from payments.config import PaymentSettings, get_settings
from payments.models.errors import ErrorCode, PaymentError
from payments.services.dynamodb import get_dynamodb_service
from payments.services.idempotency import IdempotencyLedger
from payments.services.notification_service import NotificationService
from payments.services.order_service import OrderService
from payments.services.paystack_service import PaystackService, PaystackServiceError
from payments.services.reconciliation import ReconciliationEngine
from payments.services.signature import WebhookSignatureVerifier

logger = logging.getLogger(__name__)


def get_payment_settings() -> PaymentSettings:
    """Get the shared payment settings."""
    return get_settings()


@lru_cache
def get_order_service() -> OrderService:
    """Get cached OrderService instance.

    Returns:
        OrderService configured with DynamoDB singleton.
    """
    return OrderService(db=get_dynamodb_service())


@lru_cache
def get_idempotency_ledger() -> IdempotencyLedger:
    """Get cached IdempotencyLedger instance.

    Returns:
        IdempotencyLedger configured with DynamoDB singleton.
    """
    return IdempotencyLedger(db=get_dynamodb_service())


@lru_cache
def get_paystack_gateway() -> PaystackService:
    """Get cached PaystackService instance.

    Returns:
        PaystackService configured from environment settings.
    """
    return PaystackService(get_settings())


@lru_cache
def get_notification_service() -> NotificationService:
    return NotificationService()


@lru_cache
def get_reconciliation_engine() -> ReconciliationEngine:
    """Get cached ReconciliationEngine instance.

    Returns:
        ReconciliationEngine wired to the order store, ledger and gateway.
    """
    return ReconciliationEngine(
        orders=get_order_service(),
        ledger=get_idempotency_ledger(),
        gateway=get_paystack_gateway(),
        settings=get_settings(),
        notifier=get_notification_service(),
    )


def get_signature_verifier() -> WebhookSignatureVerifier:
    """Build a verifier keyed with the Paystack secret key.

    The key itself is cached by PaystackService. When it cannot be loaded
    the verifier has no secret and rejects every delivery.
    """
    try:
        secret = get_paystack_gateway().get_secret_key()
    except PaystackServiceError as e:
        logger.error("Webhook secret unavailable: %s", e)
        secret = ""
    return WebhookSignatureVerifier(secret)


def _get_header_case_insensitive(request: Request, header_name: str) -> str | None:
    for name, value in request.headers.items():
        if name.lower() == header_name.lower():
            return value.strip() if value else None
    return None


def get_current_user_id(request: Request) -> str:
    """Extract the authenticated user's sub from the API Gateway request.

    Supports two API Gateway configurations:
    1. HTTP API with JWT authorizer: sub mapped to x-user-sub header
    2. REST API with Cognito User Pools: sub in event.requestContext.authorizer.claims

    Args:
        request: FastAPI request object

    Returns:
        The user identifier from the validated JWT

    Raises:
        PaymentError: AUTH_REQUIRED if no identity is present
    """
    user_sub = _get_header_case_insensitive(request, "x-user-sub")

    if not user_sub:
        event = request.scope.get("aws.event", {})
        claims = event.get("requestContext", {}).get("authorizer", {}).get("claims", {})
        user_sub = claims.get("sub")

    if not user_sub:
        logger.warning("auth_user_sub_missing", extra={"path": request.url.path})
        raise PaymentError(code=ErrorCode.AUTH_REQUIRED)

    return str(user_sub)


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB singleton and settings.

    Example:
        @pytest.fixture(autouse=True)
        def reset_state():
            yield
            reset_services()
    """
    from payments.services.dynamodb import reset_dynamodb_service

    get_order_service.cache_clear()
    get_idempotency_ledger.cache_clear()
    get_paystack_gateway.cache_clear()
    get_notification_service.cache_clear()
    get_reconciliation_engine.cache_clear()
    get_settings.cache_clear()

    reset_dynamodb_service()
