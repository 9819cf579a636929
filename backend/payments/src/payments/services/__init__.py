"""Backend services for storefront payment reconciliation."""

from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .idempotency import IdempotencyLedger
from .notification_service import NotificationService
from .order_service import OrderService
from .paystack_service import (
    PaystackService,
    PaystackServiceError,
    PaystackTimeoutError,
)
from .reconciliation import ReconciliationEngine
from .signature import SIGNATURE_HEADER, WebhookSignatureVerifier, compute_payload_hash
from .ssm_service import SSMService, SSMServiceError, get_ssm_service

__all__ = [
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "IdempotencyLedger",
    "NotificationService",
    "OrderService",
    "PaystackService",
    "PaystackServiceError",
    "PaystackTimeoutError",
    "ReconciliationEngine",
    "SIGNATURE_HEADER",
    "WebhookSignatureVerifier",
    "compute_payload_hash",
    "SSMService",
    "SSMServiceError",
    "get_ssm_service",
]
