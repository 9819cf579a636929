"""Order model carrying the payment state used by reconciliation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .enums import PaymentStatus, TransactionStatus


class Order(BaseModel):
    """An order and the state of its payment.

    Amounts are stored in minor currency units (kobo for NGN).
    """

    model_config = ConfigDict(strict=True)

    order_id: str = Field(..., description="Unique order ID")
    user_id: str = Field(..., description="Owner of the order (JWT sub)")
    customer_email: str = Field(..., description="Email sent to the payment provider")
    total: int = Field(..., gt=0, description="Order total in minor units")
    currency: str = Field(default="NGN", description="Currency code")
    payment_status: PaymentStatus = Field(
        default=PaymentStatus.PENDING, description="Payment status"
    )
    payment_reference: str | None = Field(
        default=None,
        description="Provider reference of the current payment attempt",
        examples=["ref_abc123"],
    )
    previous_references: list[str] = Field(
        default_factory=list,
        description="References of earlier failed attempts",
    )
    amount_charged: int | None = Field(
        default=None,
        gt=0,
        description="Amount in minor units sent to the provider for the current attempt",
    )
    payment_initiated_at: datetime | None = Field(
        default=None, description="When the current attempt was initialized"
    )
    paid_at: datetime | None = Field(
        default=None, description="Set once, together with completed status"
    )
    authorization_code: str | None = Field(
        default=None,
        description="Provider authorization code for the successful charge",
        examples=["AUTH_8dfhjjdt"],
    )
    failure_reason: str | None = Field(
        default=None, description="Provider gateway response for failed attempts"
    )
    cancelled_at: datetime | None = Field(default=None, description="Cancellation timestamp")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

    @property
    def transaction_status(self) -> TransactionStatus:
        """Map the order payment status to the verify response vocabulary."""
        return {
            PaymentStatus.PENDING: TransactionStatus.PENDING,
            PaymentStatus.PROCESSING: TransactionStatus.PENDING,
            PaymentStatus.COMPLETED: TransactionStatus.SUCCESS,
            PaymentStatus.FAILED: TransactionStatus.FAILED,
            PaymentStatus.CANCELLED: TransactionStatus.CANCELLED,
        }[self.payment_status]

    @property
    def amount_due(self) -> int:
        """Amount the current attempt must settle, in minor units."""
        return self.amount_charged if self.amount_charged is not None else self.total


class OrderCreate(BaseModel):
    """Data required to create an order awaiting payment."""

    model_config = ConfigDict(strict=True)

    user_id: str
    customer_email: EmailStr
    total: int = Field(..., gt=0)
    currency: str = "NGN"
