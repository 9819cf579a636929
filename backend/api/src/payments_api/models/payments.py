"""API models for payment, webhook and order endpoints.

Amounts are exposed twice: `amount` in major units (Naira) for display and
`amountMinor` in minor units (kobo), which is what the provider charges.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from payments.models.enums import PaymentStatus, ProcessingResult, TransactionStatus
from payments.models.gateway import PaymentInitialization
from payments.models.order import Order
from payments.models.webhook import WebhookOutcome

from .common import ApiModel


def to_major_units(amount_minor: int, minor_units_per_major: int = 100) -> float:
    return float(Decimal(amount_minor) / Decimal(minor_units_per_major))


class InitializePaymentRequest(ApiModel):
    """Request to start a payment for an order.

    Amount defaults to the order total; a smaller amount may be charged
    (e.g. a deposit) but never a larger one.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {"orderId": "ORD-3F2A9C1B7D4E"},
                {"orderId": "ORD-3F2A9C1B7D4E", "amount": 15000},
            ]
        },
    )

    order_id: str = Field(..., min_length=1, description="Order to pay for")
    amount: Decimal | None = Field(
        default=None,
        gt=0,
        description="Amount in major units (Naira); defaults to the order total",
        examples=[15000],
    )


class InitializePaymentResponse(ApiModel):
    """Checkout details for redirecting the customer to the provider."""

    authorization_url: str = Field(..., examples=["https://checkout.paystack.com/0peioxfhpn"])
    access_code: str = Field(..., examples=["0peioxfhpn"])
    reference: str = Field(..., examples=["7PVGX8MEk85tgeEpVDtD"])
    order_id: str
    amount: float = Field(..., description="Amount in major units", examples=[15000.0])
    amount_minor: int = Field(..., description="Amount in minor units", examples=[1500000])

    @classmethod
    def from_initialization(
        cls, result: PaymentInitialization, minor_units_per_major: int = 100
    ) -> "InitializePaymentResponse":
        return cls(
            authorization_url=result.transaction.authorization_url,
            access_code=result.transaction.access_code,
            reference=result.transaction.reference,
            order_id=result.order.order_id,
            amount=to_major_units(result.amount_minor, minor_units_per_major),
            amount_minor=result.amount_minor,
        )


class VerifyPaymentResponse(ApiModel):
    """Payment state of an order after verification.

    `status` is the transaction view (success, failed, pending, cancelled);
    `paymentStatus` is the order's own state.
    """

    reference: str
    order_id: str
    status: TransactionStatus
    payment_status: PaymentStatus
    amount: float = Field(..., description="Amount in major units")
    amount_minor: int = Field(..., description="Amount in minor units")
    paid_at: datetime | None = None
    failure_reason: str | None = None

    @classmethod
    def from_order(
        cls, reference: str, order: Order, minor_units_per_major: int = 100
    ) -> "VerifyPaymentResponse":
        return cls(
            reference=reference,
            order_id=order.order_id,
            status=order.transaction_status,
            payment_status=order.payment_status,
            amount=to_major_units(order.amount_due, minor_units_per_major),
            amount_minor=order.amount_due,
            paid_at=order.paid_at,
            failure_reason=order.failure_reason,
        )


class WebhookResponse(ApiModel):
    """Acknowledgement returned to the provider for every accepted delivery."""

    received: bool = True
    event: str | None = None
    reference: str | None = None
    processing_result: ProcessingResult
    message: str | None = None

    @classmethod
    def from_outcome(cls, outcome: WebhookOutcome) -> "WebhookResponse":
        return cls(
            event=outcome.event,
            reference=outcome.reference,
            processing_result=outcome.processing_result,
            message=outcome.message,
        )


class CancelOrderResponse(ApiModel):
    """Order state after cancellation."""

    order_id: str
    payment_status: PaymentStatus
    payment_reference: str | None = None
    cancelled_at: datetime | None = None

    @classmethod
    def from_order(cls, order: Order) -> "CancelOrderResponse":
        return cls(
            order_id=order.order_id,
            payment_status=order.payment_status,
            payment_reference=order.payment_reference,
            cancelled_at=order.cancelled_at,
        )


class HealthResponse(ApiModel):
    status: str = "ok"
    service: str = "payments"
    timestamp: datetime
