"""Pydantic models for storefront payment reconciliation."""

from .enums import (
    EventSource,
    LedgerOutcome,
    PaymentStatus,
    ProcessingResult,
    TransactionStatus,
    WebhookEventType,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    ErrorCode,
    ErrorResponse,
    PaymentError,
)
from .gateway import InitializedTransaction, PaymentInitialization, VerifiedTransaction
from .ledger import LedgerClaim, LedgerEntry
from .order import Order, OrderCreate
from .webhook import WebhookEvent, WebhookOutcome

__all__ = [
    # Enums
    "EventSource",
    "LedgerOutcome",
    "PaymentStatus",
    "ProcessingResult",
    "TransactionStatus",
    "WebhookEventType",
    # Order
    "Order",
    "OrderCreate",
    # Ledger
    "LedgerClaim",
    "LedgerEntry",
    # Gateway
    "InitializedTransaction",
    "PaymentInitialization",
    "VerifiedTransaction",
    # Webhook
    "WebhookEvent",
    "WebhookOutcome",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "ErrorCode",
    "ErrorResponse",
    "PaymentError",
]
