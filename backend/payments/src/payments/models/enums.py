"""Enumeration types for payment reconciliation models."""

from enum import Enum


class PaymentStatus(str, Enum):
    """Payment status of an order."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransactionStatus(str, Enum):
    """Transaction status as reported to API clients by verify."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    CANCELLED = "cancelled"


class LedgerOutcome(str, Enum):
    """Outcome recorded for a provider reference in the idempotency ledger."""

    APPLIED = "applied"
    IGNORED = "ignored"


class EventSource(str, Enum):
    """Entry point that delivered a reconciliation event."""

    WEBHOOK = "webhook"
    VERIFY = "verify"
    REVERIFY = "reverify"


class WebhookEventType(str, Enum):
    """Paystack webhook event kinds handled by the reconciliation engine."""

    CHARGE_SUCCESS = "charge.success"
    CHARGE_FAILED = "charge.failed"
    TRANSFER_SUCCESS = "transfer.success"
    TRANSFER_FAILED = "transfer.failed"


class ProcessingResult(str, Enum):
    """Result of handling a single webhook delivery."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    SKIPPED = "skipped"
    ERROR = "error"
